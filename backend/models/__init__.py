"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Rental Energia - Models Package                                             ║
║                                                                              ║
║  Exporta os modelos para import direto                                       ║
║  from models import IndicacaoCreate, ContractCreate, TaskCreate, etc.        ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Auth / usuários
from .auth import (
    UserLogin,
    UserCreate,
    UserUpdate,
    ProfileUpdate,
)

# Indicações
from .indicacao import (
    IndicacaoCreate,
    IndicacaoStatusUpdate,
    IndicacaoFlagsUpdate,
    QuickLeadCreate,
)

# Contratos
from .contract import (
    ContractUnitInput,
    ContractCalculateRequest,
    ContractCreate,
    ContractDraftUpdate,
    ContractApprove,
)

# Energia
from .energy import (
    UsinaCreate,
    UsinaUpdate,
    UcCreate,
    UcUpdate,
    ProducaoCreate,
    AlocacaoCreate,
    FaturaCreate,
    FaturaStatusUpdate,
)

# Estoque
from .inventory import (
    ProductCreate,
    ProductUpdate,
    StockMovementCreate,
)

# Orçamentos
from .proposal import (
    PricingRuleUpdate,
    SimpleProposalRequest,
    ProposalCalculateRequest,
    ProposalCreate,
    ProposalStatusUpdate,
)

# Financeiro
from .financial import (
    TransactionCreate,
    CommissionPercentUpdate,
)

# Tarefas
from .task import (
    TaskCreate,
    TaskUpdate,
    TaskStatusUpdate,
    ChecklistItemCreate,
    ChecklistToggle,
    CommentCreate,
    ObserverAdd,
)

# Indicações em lote
from .indicacao_template import IndicacaoTemplateCreate, TemplateItemsImport

# Obras
from .work import (
    WorkProcessItemCreate,
    WorkProcessItemUpdate,
    WorkProcessStatusUpdate,
    WorkTasksIntegrationUpdate,
    WorkCommentCreate,
)

# Chat / CRM
from .chat import DirectConversationCreate, ChatMessageCreate
from .crm import CardStageUpdate
