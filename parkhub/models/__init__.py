# ParkHub Database Models
# Import all models here for SQLAlchemy discovery

from parkhub.models.parking_space import ParkingSpace                # noqa
from parkhub.models.space_status_history import SpaceStatusHistory   # noqa
from parkhub.models.notification import Notification                 # noqa
