import logging
import uuid
from abc import ABC, abstractmethod
from typing import Optional

from bson.errors import InvalidId
from bson.objectid import ObjectId
from gridfs.errors import NoFile
from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorGridFSBucket
from pymongo.errors import PyMongoError

from cityreport.core.errors import StoreUnavailable
from cityreport.models.report_model import CompressedImage

logger = logging.getLogger(__name__)


class MediaStore(ABC):
    """Persists compressed photos and hands back an opaque photo reference."""

    @abstractmethod
    async def store(self, image: CompressedImage, filename: Optional[str] = None) -> str: ...

    @abstractmethod
    async def delete(self, photo_id: str) -> bool: ...


class GridFSMediaStore(MediaStore):
    """MediaStore backed by a MongoDB GridFS bucket."""

    def __init__(self, db: AsyncIOMotorDatabase, bucket_name: str = "photos"):
        self.bucket = AsyncIOMotorGridFSBucket(db, bucket_name=bucket_name)

    async def store(self, image: CompressedImage, filename: Optional[str] = None) -> str:
        filename = filename or f"photo_{uuid.uuid4().hex}.{image.content_type.split('/')[-1]}"
        try:
            file_id = await self.bucket.upload_from_stream(
                filename=filename,
                source=image.data,
                metadata={
                    "contentType": image.content_type,
                    "width": image.width,
                    "height": image.height,
                },
            )
        except PyMongoError as e:
            logger.error(f"❌ Photo upload failed: {e}")
            raise StoreUnavailable("upload photo", e) from e

        logger.info(f"✅ Photo stored: {file_id} ({image.byte_length // 1024}KB)")
        return str(file_id)

    async def delete(self, photo_id: str) -> bool:
        try:
            await self.bucket.delete(ObjectId(photo_id))
            return True
        except (InvalidId, NoFile):
            logger.warning(f"⚠️ Photo {photo_id} not found")
            return False
        except PyMongoError as e:
            logger.error(f"❌ Photo delete failed: {e}")
            raise StoreUnavailable(f"delete photo {photo_id}", e) from e
