from spinwin.services.code_generator import (
    CODE_PATTERN,
    VOUCHER_ALPHABET,
    generate_voucher_code,
    is_valid_code,
    normalize_code,
    tenant_prefix,
)


def test_tenant_prefix_truncates_and_uppercases():
    assert tenant_prefix("acme-coffee") == "ACME"


def test_tenant_prefix_strips_symbols_before_truncating():
    assert tenant_prefix("a-b_c.d-e") == "ABCD"


def test_tenant_prefix_pads_short_slug():
    assert tenant_prefix("ab") == "ABXX"
    assert tenant_prefix("") == "XXXX"


def test_generated_code_format():
    code = generate_voucher_code("acme")
    assert CODE_PATTERN.match(code)
    prefix, random_part = code.split("-")
    assert prefix == "ACME"
    assert len(random_part) == 12
    assert all(ch in VOUCHER_ALPHABET for ch in random_part)


def test_alphabet_excludes_confusable_characters():
    for ch in "01OIL":
        assert ch not in VOUCHER_ALPHABET


def test_generated_codes_are_unique():
    codes = {generate_voucher_code("acme") for _ in range(10000)}
    assert len(codes) == 10000


def test_normalize_and_validate():
    assert normalize_code("  acme-x7k9p2m4n5r8 ") == "ACME-X7K9P2M4N5R8"
    assert is_valid_code("ACME-X7K9P2M4N5R8")
    assert not is_valid_code("ACME-X7K9")
    assert not is_valid_code("ACMEX7K9P2M4N5R8")
    assert not is_valid_code("acme-x7k9p2m4n5r8")
