from spinwin.models.customer import Customer, Prize
from spinwin.models.voucher import Voucher, VoucherRedemption

__all__ = ["Customer", "Prize", "Voucher", "VoucherRedemption"]
