import pytest

from gmail_relay.addresses import as_address_list, find_invalid_addresses, is_valid_email


@pytest.mark.parametrize(
    "address",
    [
        "user@example.com",
        "first.last+tag@sub.example.co.uk",
        "o'neil@example.org",
        "a_b-c@x-y.io",
        "x" * 64 + "@example.com",
    ],
)
def test_accepts_valid_addresses(address):
    assert is_valid_email(address)


@pytest.mark.parametrize(
    "address",
    [
        "",
        "plain",
        "user@localhost",
        "user..name@example.com",
        "user@example..com",
        "user@.example.com",
        "user@example.com.",
        "@example.com",
        "user@",
        "a@b@example.com",
        "x" * 65 + "@example.com",
        "user@" + "a" * 250 + ".com",
        "user name@example.com",
        "user@exa_mple.com",
    ],
)
def test_rejects_invalid_addresses(address):
    assert not is_valid_email(address)


def test_rejects_non_strings():
    assert not is_valid_email(None)
    assert not is_valid_email(42)
    assert not is_valid_email(["a@b.com"])


def test_rejects_overlong_address():
    local = "l" * 64
    domain = ".".join(["d" * 60] * 4) + ".com"
    address = f"{local}@{domain}"
    assert len(address) > 254
    assert not is_valid_email(address)


def test_batch_trims_and_reports_failures():
    assert find_invalid_addresses(" a@b.com ") == []
    assert find_invalid_addresses(["a@b.com", "  c@d.org", "bad", "x@y"]) == ["bad", "x@y"]


def test_batch_empty_failure_list_means_valid():
    assert find_invalid_addresses(["one@example.com", "two@example.com"]) == []


def test_as_address_list():
    assert as_address_list(None) == []
    assert as_address_list("a@b.com") == ["a@b.com"]
    assert as_address_list(("a@b.com", "c@d.com")) == ["a@b.com", "c@d.com"]
