"""
券码生成
格式：{租户前缀4位}-{随机12位}，例如 ACME-X7K9P2M4N5R8
"""
import re
import secrets

# 随机部分字符集：大写字母 + 数字，去掉易混淆的 0/O/1/I/L，方便店员手工输入
VOUCHER_ALPHABET = "23456789ABCDEFGHJKMNPQRSTUVWXYZ"
PREFIX_LENGTH = 4
RANDOM_LENGTH = 12
PREFIX_PAD_CHAR = "X"

CODE_PATTERN = re.compile(r"^[A-Z0-9]{4}-[A-Z0-9]{12}$")

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def tenant_prefix(tenant_slug: str) -> str:
    """由租户 slug 得到 4 位大写前缀：去掉非字母数字，截断，不足补 X"""
    clean = _NON_ALNUM.sub("", tenant_slug or "")
    return clean[:PREFIX_LENGTH].upper().ljust(PREFIX_LENGTH, PREFIX_PAD_CHAR)


def _random_part() -> str:
    return "".join(secrets.choice(VOUCHER_ALPHABET) for _ in range(RANDOM_LENGTH))


def generate_voucher_code(tenant_slug: str) -> str:
    """生成一个券码（不检查唯一性，冲突由入库时的唯一约束发现并重试）"""
    return f"{tenant_prefix(tenant_slug)}-{_random_part()}"


def normalize_code(code: str) -> str:
    return code.strip().upper()


def is_valid_code(code: str) -> bool:
    return bool(CODE_PATTERN.match(code))
