from vethub.models.user import User
from vethub.models.animal import Animal
from vethub.models.appointment import Appointment
from vethub.models.chat import Chat, Message, chat_participants, message_reads
from vethub.models.notification import Notification
