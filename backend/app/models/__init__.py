from app.models.subscription import VaultSubscription
from app.models.entitlement import AccountEntitlement
from app.models.notification import AppStoreNotification
from app.models.deletion_schedule import DeletionSchedule
