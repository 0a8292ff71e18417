# app/schemas/transaction_schema.py

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transaction_id: str
    transaction_ref: str
    type: str
    amount: Decimal
    currency: str
    status: str
    from_user_id: Optional[str] = None
    to_user_id: Optional[str] = None
    job_id: Optional[str] = None
    description: Optional[str] = None
    commission_rate: Optional[Decimal] = None
    commission: Decimal
    net_amount: Decimal
    payment_method: Optional[str] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None

# --- 提領申請 (Input) ---
class WithdrawalCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    payment_method: str = Field("bank", max_length=50)

class WithdrawalReject(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)

class BalanceOut(BaseModel):
    freelancer_id: str
    available_balance: Decimal

class MonthlyEarning(BaseModel):
    year: int
    month: int
    total: Decimal
    count: int

class EarningsSummaryOut(BaseModel):
    total_earned: Decimal
    completed_jobs: int
    total_withdrawn: Decimal
    pending_withdrawals: Decimal
    pending_payments: Decimal
    available_balance: Decimal
    monthly_earnings: List[MonthlyEarning] = []

class PaginatedTransactionsOut(BaseModel):
    items: List[TransactionOut]
    total: int
    page: int
    pages: int

class WithdrawalListOut(PaginatedTransactionsOut):
    # 管理後台徽章用，不受 status 篩選影響
    pending_count: int

class CommissionReportOut(PaginatedTransactionsOut):
    total_commission: Decimal

class TransactionStatsOut(BaseModel):
    # 已完成的職缺付款 (含抽成前金額)
    total_volume: Decimal
    platform_revenue: Decimal
    monthly_volume: Decimal
    total_transactions: int
