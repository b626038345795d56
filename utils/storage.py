import asyncio
import logging
import uuid
from datetime import datetime, timezone

from firebase_admin import storage as admin_storage

from core.errors import ValidationError
from core.firebase import STORAGE_BUCKET, initialize_firebase

logger = logging.getLogger(__name__)

ALLOWED_PHOTO_TYPES = ["image/jpeg", "image/jpg", "image/png", "image/webp"]

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


def validate_photo_type(content_type: str) -> None:
    if content_type not in ALLOWED_PHOTO_TYPES:
        raise ValidationError(
            f"Invalid file type. Allowed types: {', '.join(ALLOWED_PHOTO_TYPES)}"
        )


async def upload_clock_in_photo(
    user_id: str, shift_id: str, content: bytes, content_type: str
) -> str:
    """
    Upload a clock-in verification photo to Firebase Storage and return the
    object path. Download tokens are nullified so the photo is only reachable
    through the Admin SDK.
    """
    validate_photo_type(content_type)
    initialize_firebase()

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    unique_id = uuid.uuid4().hex[:6]
    filename = f"{timestamp}_{unique_id}.{_EXTENSIONS[content_type]}"
    object_path = f"clock_in_photos/{user_id}/{shift_id}/{filename}"

    admin_bucket = admin_storage.bucket(STORAGE_BUCKET)
    admin_blob = admin_bucket.blob(object_path)

    await asyncio.to_thread(
        admin_blob.upload_from_string, content, content_type=content_type
    )

    # Make the file secure by nullifying any potential download tokens
    admin_blob.metadata = {"firebaseStorageDownloadTokens": None}
    await asyncio.to_thread(admin_blob.patch)

    logger.info(f"[PHOTO] Uploaded clock-in photo {object_path} ({len(content)} bytes)")
    return object_path
