from .invite_repository import InviteRepository
from .invoice_repository import InvoiceRepository
from .notification_repository import NotificationRepository
from .order_repository import OrderRepository
from .pdf_copy_repository import PdfCopyRepository
from .quotation_repository import QuotationRepository
from .rfq_repository import RfqRepository
from .settings_repository import SettingsRepository
from .status_event_repository import StatusEventRepository
from .user_repository import UserRepository
