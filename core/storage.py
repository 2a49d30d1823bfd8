"""
CORE App - Profile image storage

Images go through Django's default_storage (filesystem in development,
whatever STORAGES points at in production); only the public URL is kept
on the carrier profile.
"""

import logging
import os
import uuid
from typing import Callable, Optional

from django.core.files.storage import default_storage
from django.utils import timezone

from core.models import CarrierProfile

logger = logging.getLogger(__name__)

MAX_PROFILE_IMAGE_BYTES = 5 * 1024 * 1024
ALLOWED_IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.webp'}


class ProfileImageError(ValueError):
    pass


def profile_image_path(user, filename: str) -> str:
    ext = os.path.splitext(filename or '')[1].lower() or '.jpg'
    return f"profile_images/{user.pk}/{uuid.uuid4().hex}{ext}"


def upload_profile_image(
    user,
    uploaded_file,
    absolute_url: Optional[Callable[[str], str]] = None,
) -> str:
    """
    Store a profile photo and record its URL on the carrier profile.

    Args:
        user: carrier owning the profile
        uploaded_file: Django UploadedFile
        absolute_url: turns a storage URL into an absolute one
            (request.build_absolute_uri in views)

    Returns:
        The public URL now stored on the profile

    Raises:
        ProfileImageError: bad extension, oversized file or no profile
    """
    ext = os.path.splitext(uploaded_file.name or '')[1].lower()
    if ext not in ALLOWED_IMAGE_EXTENSIONS:
        raise ProfileImageError(f"Unsupported image type: {ext or 'none'}")
    if uploaded_file.size > MAX_PROFILE_IMAGE_BYTES:
        raise ProfileImageError("Image too large (max 5 MB)")

    profile = CarrierProfile.objects.filter(user=user).first()
    if profile is None:
        raise ProfileImageError("No carrier profile for this account")

    saved_name = default_storage.save(profile_image_path(user, uploaded_file.name), uploaded_file)
    url = default_storage.url(saved_name)
    if absolute_url is not None:
        url = absolute_url(url)

    CarrierProfile.objects.filter(pk=profile.pk).update(
        profile_image_url=url,
        updated_at=timezone.now(),
    )
    logger.info(f"[STORAGE] Profile photo stored for {user.phone_number}: {saved_name}")
    return url
