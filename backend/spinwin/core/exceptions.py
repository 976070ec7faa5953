"""
错误分类
业务结果（未找到、过期、已核销等）以返回值表达，只有基础设施故障以异常抛出
"""
import enum


class ErrorCode(str, enum.Enum):
    """券相关错误码"""
    NOT_FOUND = "NOT_FOUND"
    WRONG_TENANT = "WRONG_TENANT"
    EXPIRED = "EXPIRED"
    VOIDED = "VOIDED"
    LIMIT_REACHED = "LIMIT_REACHED"
    INVALID_INPUT = "INVALID_INPUT"
    INFRASTRUCTURE_FAILURE = "INFRASTRUCTURE_FAILURE"


class VoucherError(Exception):
    """券服务异常基类"""
    code: ErrorCode = ErrorCode.INFRASTRUCTURE_FAILURE


class StoreUnavailableError(VoucherError):
    """存储不可用（连接失败、锁超时等）"""
    code = ErrorCode.INFRASTRUCTURE_FAILURE


class VoucherCodeGenerationError(VoucherError):
    """多次重试后仍无法生成不冲突的券码"""
    code = ErrorCode.INFRASTRUCTURE_FAILURE


class InvalidVoucherReferenceError(VoucherError):
    """奖品或顾客不存在（或不属于该租户）"""
    code = ErrorCode.INVALID_INPUT


class SpinConflictError(VoucherError):
    """spin_id 已被其他租户的券占用"""
    code = ErrorCode.INVALID_INPUT
