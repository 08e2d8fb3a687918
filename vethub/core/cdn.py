import cloudinary
import cloudinary.uploader
from vethub.core.config import settings

def setup_cloudinary():
    if not (settings.CLOUDINARY_CLOUD_NAME and settings.CLOUDINARY_API_KEY and settings.CLOUDINARY_API_SECRET):
        raise RuntimeError("Faltan CLOUDINARY_* en .env")
    cloudinary.config(
        cloud_name=settings.CLOUDINARY_CLOUD_NAME,
        api_key=settings.CLOUDINARY_API_KEY,
        api_secret=settings.CLOUDINARY_API_SECRET,
        secure=True,
    )

setup_cloudinary()

def _resource_type_for(content_type: str) -> str:
    # cloudinary guarda audio como "video"
    if content_type.startswith("image/"):
        return "image"
    if content_type.startswith(("video/", "audio/")):
        return "video"
    return "raw"

def upload_chat_media(file_bytes: bytes, content_type: str, folder: str) -> tuple[str, str, str]:
    """
    Sube un adjunto de chat. Devuelve (secure_url, public_id, resource_type);
    el resource_type hace falta después para poder borrarlo.
    """
    resource_type = _resource_type_for(content_type)
    res = cloudinary.uploader.upload(
        file_bytes,
        folder=folder,
        resource_type=resource_type,
        overwrite=False,
        unique_filename=True,
        use_filename=False,
        tags=["vethub", "chat"],
        type="upload",
    )
    return res["secure_url"], res["public_id"], resource_type

def destroy(public_id: str, resource_type: str = "image") -> None:
    if public_id:
        cloudinary.uploader.destroy(public_id, resource_type=resource_type, invalidate=True)
