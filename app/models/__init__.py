# Módulo models: define las clases y estructuras de datos principales de la aplicación (SQLModel/Pydantic)
# El orden de las importaciones es importante para la creación de las tablas en la base de datos
# Las tablas con claves foráneas deben importarse después de las tablas que referencian

from .user import User, UserRole
from .service import Service, ServiceAddOn, ServiceSnapshot, AddOnSnapshot
from .contact import ContactData, ProjectDetails
from .order import Order, OrderStatus
from .checkout_session import CheckoutSession
from .payment import Payment, PaymentStatus
from .project import Project
from .referral_settings import ReferralSettings
from .referral_earning import ReferralEarning
from .referral import Referral, ReferralStatus
from .withdrawal import WithdrawalRequest, WithdrawalStatus
