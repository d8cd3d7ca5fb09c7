from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    """Wire format is camelCase; snake_case names are accepted too."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class ChargeCreateRequest(_CamelModel):
    financial_flow_id: Union[int, str]
    billing_type: str
    value: Union[float, str]
    due_date: Union[date, str]
    cliente_id: Optional[int] = None
    integration_api_key_id: Optional[int] = None
    description: Optional[str] = None
    card_token: Optional[str] = None
    asaas_customer_id: Optional[str] = None
    customer: Optional[str] = None
    external_reference_id: Optional[str] = None
    additional_fields: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    payer_email: Optional[str] = None
    payer_name: Optional[str] = None
    customer_document: Optional[str] = None


class ChargeResponse(_CamelModel):
    id: int
    financial_flow_id: str
    cliente_id: Optional[int] = None
    credential_id: Optional[int] = None
    asaas_charge_id: str
    billing_type: str
    status: str
    due_date: Optional[date] = None
    value: Optional[Decimal] = None
    invoice_url: Optional[str] = None
    pix_payload: Optional[str] = None
    pix_qr_code: Optional[str] = None
    boleto_url: Optional[str] = None
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FinancialFlowResponse(_CamelModel):
    id: int
    descricao: Optional[str] = None
    vencimento: Optional[date] = None
    valor: Optional[Decimal] = None
    status: str
    pagamento: Optional[date] = None
    external_provider: Optional[str] = None
    external_reference_id: Optional[str] = None


class ChargeCreateResponse(_CamelModel):
    charge: ChargeResponse
    flow: FinancialFlowResponse


class BillingContact(_CamelModel):
    company_name: Optional[str] = None
    document: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None


class PlanPaymentRequest(_CamelModel):
    company_id: int
    plan_id: int
    pricing_mode: str = "mensal"
    payment_method: str = "PIX"
    card_token: Optional[str] = None
    billing: Optional[BillingContact] = None
    # Flat fallbacks for clients that do not nest `billing`.
    company_name: Optional[str] = None
    company_document: Optional[str] = None
    billing_email: Optional[str] = None
    notes: Optional[str] = None


class PlanSummary(_CamelModel):
    id: int
    nome: Optional[str] = None
    pricing_mode: str
    price: Decimal


class PlanPaymentResponse(_CamelModel):
    plan: PlanSummary
    payment_method: str
    charge: ChargeResponse
    flow: FinancialFlowResponse


class SubscriptionProvisionRequest(_CamelModel):
    company_id: int
    plan_id: int
    status: str = "active"
    start_date: datetime
    cadence: Optional[str] = None


class SubscriptionStatusResponse(_CamelModel):
    company_id: int
    plan_id: Optional[int] = None
    status: str
    cadence: Optional[str] = None
    started_at: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    grace_expires_at: Optional[datetime] = None


class AsaasSubscriptionRequest(_CamelModel):
    customer: str
    billing_type: str
    value: float
    next_due_date: str
    subscription_id: Optional[str] = None
    company_id: Optional[int] = None
    cycle: Optional[str] = None
    description: Optional[str] = None
    external_reference: Optional[str] = None
    credit_card: Optional[Dict[str, Any]] = None
    credit_card_holder_info: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    split: Optional[List[Dict[str, Any]]] = None
    trial: Optional[Dict[str, Any]] = None
    update_pending_payments: Optional[bool] = None


class SubscriptionTimelineResponse(_CamelModel):
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    grace_period_end: Optional[datetime] = None
    cadence: str


class AsaasSubscriptionResponse(_CamelModel):
    subscription: Dict[str, Any]
    timeline: SubscriptionTimelineResponse


class SubscriptionPaymentItem(_CamelModel):
    id: str
    description: str = ""
    due_date: str = ""
    value: float = 0.0
    status: str = ""
    billing_type: str = ""
    invoice_url: Optional[str] = None


class SubscriptionPaymentsResponse(BaseModel):
    data: List[SubscriptionPaymentItem] = Field(default_factory=list)


class PixQrCodeResponse(_CamelModel):
    payload: str
    encoded_image: str = ""
    expiration_date: str = ""


class CancelSubscriptionResponse(_CamelModel):
    subscription: Dict[str, Any]
    company_id: Optional[int] = None
    cancelled: bool = True


class WebhookSecretResponse(_CamelModel):
    credential_id: int
    webhook_url: str
    webhook_secret: str
    instructions: List[str]


class WebhookAck(BaseModel):
    received: bool = True
