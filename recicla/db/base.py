from ..models.user import User, UserRole
from ..models.delivery import Delivery, DeliveryStatus, Material
from ..models.reward import Reward, RewardCategory, Redemption, RedemptionStatus
from ..models.points import PointsTransaction, TransactionType
from .base_class import Base
