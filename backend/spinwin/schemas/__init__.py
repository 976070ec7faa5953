from spinwin.schemas.voucher import (
    ValidationReason,
    VoucherStatus,
    PrizeInfo,
    CustomerInfo,
    VoucherSnapshot,
    ValidationDetails,
    ValidationResult,
    VoucherRead,
    RedemptionResult,
    PhoneLookupItem,
    VoucherFilters,
    Pagination,
    VoucherListResponse,
    VoucherStats,
    CreateVoucherParams,
    VoidResult,
)
