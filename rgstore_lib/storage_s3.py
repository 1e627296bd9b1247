import os
import uuid

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from werkzeug.utils import secure_filename

S3_BUCKET_NAME = os.environ.get("S3_BUCKET_NAME")
AWS_REGION = os.environ.get("AWS_REGION", "ap-south-1")

ALLOWED_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}


def get_s3_client():
    return boto3.client("s3", region_name=AWS_REGION)


def allowed_image(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_IMAGE_EXTENSIONS


def object_key(folder: str, owner_id, filename: str) -> str:
    """
    Build a collision-free key such as product-images/12_ab12cd34_cover.jpg.
    """
    safe_name = secure_filename(filename) or "upload"
    return f"{folder}/{owner_id}_{uuid.uuid4().hex[:8]}_{safe_name}"


def upload_image(file_storage, key: str) -> str:
    """
    Upload an image to S3 and return the public URL.

    Relies on the bucket policy for public-read access. This function
    does NOT set an ACL because the bucket uses Object Ownership
    'Bucket owner enforced', which disables ACLs.
    """
    if not S3_BUCKET_NAME:
        raise RuntimeError("S3_BUCKET_NAME environment variable is not set.")

    s3_client = get_s3_client()

    try:
        extra_args = {
            "ContentType": file_storage.mimetype or "image/jpeg"
        }

        s3_client.upload_fileobj(
            Fileobj=file_storage,
            Bucket=S3_BUCKET_NAME,
            Key=key,
            ExtraArgs=extra_args
        )

    except (BotoCoreError, ClientError) as e:
        raise RuntimeError(f"Failed to upload image to S3: {e}") from e

    return public_url(key)


def public_url(key: str) -> str:
    return f"https://{S3_BUCKET_NAME}.s3.{AWS_REGION}.amazonaws.com/{key}"


def delete_image(url: str):
    """
    Remove an image previously stored by upload_image. URLs that do not
    point at our bucket are ignored.
    """
    if not S3_BUCKET_NAME or not url:
        return
    prefix = public_url("")
    if not url.startswith(prefix):
        return

    try:
        get_s3_client().delete_object(Bucket=S3_BUCKET_NAME, Key=url[len(prefix):])
    except (BotoCoreError, ClientError) as e:
        raise RuntimeError(f"Failed to delete image from S3: {e}") from e
