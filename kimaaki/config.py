# kimaaki/config.py

"""
Ficheiro central de configurações do marketplace KIMAAKI.
Regras de negócio que podem mudar com o tempo ficam aqui; os segredos vêm do ambiente.
"""
import os

from dotenv import load_dotenv

load_dotenv()

# =================================================
# Ambiente / serviços externos
# =================================================
SUPABASE_URL = os.environ.get("SUPABASE_URL")
SUPABASE_SERVICE_KEY = os.environ.get("SUPABASE_SERVICE_KEY")
DATABASE_URL = os.environ.get("DATABASE_URL")

SECRET_KEY = os.environ.get("JWT_SECRET", "fallback-secret-key-change-in-production")

# Origens extra para CORS, separadas por vírgula
EXTRA_ALLOWED_ORIGINS = [
    o.strip() for o in os.environ.get("EXTRA_ALLOWED_ORIGINS", "").split(",") if o.strip()
]

SOCKETIO_ASYNC_MODE = os.environ.get("SOCKETIO_ASYNC_MODE", "eventlet")


# =================================================
# Países atendidos
# =================================================
DEFAULT_COUNTRY = "Angola"

COUNTRIES = [
    {"code": "AO", "name": "Angola", "currency": "AOA", "currency_symbol": "Kz",
     "phone_code": "+244", "cities": ["Luanda", "Benguela", "Huambo", "Lobito", "Cabinda"]},
    {"code": "MZ", "name": "Moçambique", "currency": "MZN", "currency_symbol": "MT",
     "phone_code": "+258", "cities": ["Maputo", "Beira", "Nampula", "Matola", "Quelimane"]},
    {"code": "CV", "name": "Cabo Verde", "currency": "CVE", "currency_symbol": "$",
     "phone_code": "+238", "cities": ["Praia", "Mindelo", "Santa Maria", "Assomada", "Porto Novo"]},
    {"code": "GW", "name": "Guiné-Bissau", "currency": "XOF", "currency_symbol": "CFA",
     "phone_code": "+245", "cities": ["Bissau", "Bafatá", "Gabú", "Bissorã", "Bolama"]},
]


# =================================================
# Planos e comissões
# =================================================
PLANS = ("basic", "premium")
DELIVERY_TYPES = ("platform_delivery", "self_delivery", "pickup")

# Percentagem retida pela plataforma sobre o subtotal, por plano e tipo de entrega.
PLAN_COMMISSIONS = {
    "basic": {"platform_delivery": 15, "self_delivery": 8, "pickup": 5},
    "premium": {"platform_delivery": 20, "self_delivery": 12, "pickup": 8},
}

PLAN_DETAILS = {
    "basic": {
        "name": "Plano Básico",
        "commissions": PLAN_COMMISSIONS["basic"],
        "features": [
            "Comissão: 15% (entregadores da plataforma)",
            "Comissão: 8% (self-delivery)",
            "Comissão: 5% (retirada/pickup)",
            "Visibilidade padrão no aplicativo",
        ],
    },
    "premium": {
        "name": "Plano Premium",
        "commissions": PLAN_COMMISSIONS["premium"],
        "features": [
            "Comissão: 20% (entregadores da plataforma)",
            "Comissão: 12% (self-delivery)",
            "Comissão: 8% (retirada/pickup)",
            "Destaque nos resultados de busca",
            'Aparecer na seção "Recomendados"',
            "Participação em campanhas de marketing",
        ],
    },
}


# =================================================
# Pedidos e taxa de entrega
# =================================================
# Taxa fixa usada quando a empresa não definiu a sua (em Kz).
DEFAULT_DELIVERY_FEE = 500

ORDER_STATUSES = ("pending", "confirmed", "preparing", "ready", "on_way", "delivered", "cancelled")
ACTIVE_ORDER_STATUSES = ("confirmed", "preparing", "ready", "on_way")
PAYMENT_METHODS = ("card", "cash", "mpesa", "emola", "mvola", "paypal")

PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")
# status de pagamento -> próximos status permitidos
PAYMENT_STATUS_TRANSITIONS = {
    "pending": ("paid", "failed"),
    "failed": ("pending", "paid"),
    "paid": ("refunded",),
    "refunded": (),
}

MAX_CART_ITEMS = 50


# =================================================
# Cupons
# =================================================
COUPON_TYPES = ("percentage", "fixed", "free_shipping")


# =================================================
# Agendamento de entregas
# =================================================
# Janela (em dias) de horários oferecidos ao cliente.
SLOT_WINDOW_DAYS = 7
# Agendamentos que ainda ocupam vaga; só os anteriores à saída para entrega podem ser cancelados.
CANCELLABLE_SCHEDULE_STATUSES = ("scheduled", "confirmed", "preparing")
ACTIVE_SCHEDULE_STATUSES = CANCELLABLE_SCHEDULE_STATUSES + ("out_for_delivery",)


# =================================================
# Cadastros e documentos
# =================================================
ROLES = ("cliente", "empresa", "entregador", "admin")
REGISTRATION_STATUSES = ("pending", "approved", "rejected")
# Perfis com estes status não passam na validação do token
BLOCKED_PROFILE_STATUSES = ("pending", "rejected", "suspended")

COMPANY_DOCUMENTS_BUCKET = "company-documents"
DELIVERY_DOCUMENTS_BUCKET = "delivery-documents"
ALLOWED_DOCUMENT_EXTENSIONS = {"png", "jpg", "jpeg", "webp", "pdf"}
MAX_DOCUMENT_SIZE = 5 * 1024 * 1024  # 5MB


# =================================================
# Notificações e avaliações
# =================================================
NOTIFICATIONS_PAGE_SIZE = 50
NOTIFICATION_TYPES = ("order_update", "order_received", "promotion", "system", "driver_message")
RATING_TARGET_TYPES = ("restaurant", "driver")
