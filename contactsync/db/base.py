"""
Import all models here to ensure they are registered with SQLAlchemy.
"""
# Import Base
from contactsync.models.base import Base

# Import all models
from contactsync.models.location import Company, Location
from contactsync.models.upload_job import UploadJob
from contactsync.models.queue_job import QueueJob
