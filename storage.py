"""Object storage buckets kept on local disk and served publicly by main.py."""
import logging
import os
import shutil
import uuid
from typing import BinaryIO, Optional, Tuple

from werkzeug.utils import secure_filename

import config

logger = logging.getLogger("patrolstore.storage")

PRODUCT_TEMPLATES = "product-templates"


class StorageError(Exception):
    pass


class Bucket:
    def __init__(self, name: str, allowed_extensions: Tuple[str, ...] = (), root: Optional[str] = None):
        self.name = name
        self.allowed_extensions = allowed_extensions
        self.root = root

    @property
    def path(self) -> str:
        return os.path.join(self.root or config.STORAGE_DIR, self.name)

    def upload(self, filename: str, fileobj: BinaryIO) -> str:
        ext = os.path.splitext(filename or "")[1].lower()
        if self.allowed_extensions and ext not in self.allowed_extensions:
            allowed = ", ".join(self.allowed_extensions)
            raise StorageError(f"Only {allowed} files are allowed in {self.name}")
        safe_name = secure_filename(filename) or f"upload{ext}"
        key = f"{uuid.uuid4().hex}-{safe_name}"
        os.makedirs(self.path, exist_ok=True)
        with open(os.path.join(self.path, key), "wb") as out:
            shutil.copyfileobj(fileobj, out)
        logger.info("Stored %s in bucket %s", key, self.name)
        return key

    def get_public_url(self, key: str) -> str:
        return f"{config.PUBLIC_STORAGE_URL}/{self.name}/{key}"


def template_bucket() -> Bucket:
    return Bucket(PRODUCT_TEMPLATES, allowed_extensions=(".zip",))
