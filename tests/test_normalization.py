import pytest

from crm_dedupe.normalization import (
    contact_display_name,
    contact_full_name,
    email_key,
    format_phone_e164_safe,
    normalize_company_name,
    normalize_email,
    normalize_name,
    normalize_phone,
    normalize_website,
    split_full_name,
    validate_email_safe,
)


def test_normalize_email_is_case_and_whitespace_insensitive():
    assert normalize_email(" John@X.COM ") == normalize_email("john@x.com") == "john@x.com"
    assert normalize_email(None) == ""
    assert normalize_email("") == ""


def test_normalize_name():
    assert normalize_name("  Acme Corp  ") == "acme corp"
    assert normalize_name(None) == ""


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("https://WWW.Example.com/", "example.com"),
        ("http://example.com", "example.com"),
        ("www.example.com/about/", "example.com/about"),
        ("  Example.COM  ", "example.com"),
        (None, ""),
    ],
)
def test_normalize_website(raw, expected):
    assert normalize_website(raw) == expected


def test_normalize_website_strips_only_one_trailing_slash():
    assert normalize_website("example.com//") == "example.com/"


def test_normalize_phone_strips_formatting():
    assert normalize_phone("(415) 555-2671") == "4155552671"
    assert normalize_phone("+1.415.555.2671") == "+14155552671"
    assert normalize_phone(None) == ""


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Acme Inc", "acme"),
        ("Acme Inc.", "acme"),
        ("ACME CORPORATION", "acme"),
        ("Acme Co", "acme"),
        ("Globex Technologies", "globex"),
        ("Acme Holdings Inc", "acme holdings"),
        ("Techcorp", "techcorp"),
        ("Co", "co"),
        ("", ""),
    ],
)
def test_normalize_company_name_strips_one_suffix(raw, expected):
    assert normalize_company_name(raw) == expected


@pytest.mark.parametrize(
    "normalizer,value",
    [
        (normalize_email, " John@X.COM "),
        (normalize_name, " Jane Doe "),
        (normalize_website, "https://www.example.com/"),
        (normalize_phone, "(415) 555-2671"),
    ],
)
def test_normalizers_are_idempotent(normalizer, value):
    once = normalizer(value)
    assert normalizer(once) == once


def test_normalize_company_name_strips_only_the_last_of_stacked_suffixes():
    once = normalize_company_name("Acme Inc.")
    assert normalize_company_name(once) == once
    # a second pass would strip the next suffix, so stacked suffixes are not idempotent
    assert normalize_company_name("Acme Co Inc") == "acme co"
    assert normalize_company_name("acme co") == "acme"


def test_format_phone_e164_safe():
    assert format_phone_e164_safe("(415) 555-2671") == "+14155552671"
    assert format_phone_e164_safe("+1 415 555 2671") == "+14155552671"
    assert format_phone_e164_safe("") == ""


def test_validate_email_safe():
    assert validate_email_safe(" Jane@Acme.io ") == "jane@acme.io"
    assert validate_email_safe("not-an-email") == ""
    assert validate_email_safe(None) == ""


def test_email_key_falls_back_for_addresses_the_validator_rejects():
    assert email_key(" Jane@Acme.io ") == "jane@acme.io"
    assert email_key("OPS@corp.local") == "ops@corp.local"
    assert email_key("Jo@Intranet") == "jo@intranet"
    assert email_key(None) == ""


def test_contact_names():
    assert contact_full_name("Jane", "Doe") == "Jane Doe"
    assert contact_full_name("Jane", None) == "Jane"
    assert contact_full_name("", "  ") == "Unnamed Contact"
    assert contact_display_name("Jane", "Doe") == "Doe, Jane"
    assert split_full_name("Mary Jane  Watson") == ("Mary", "Jane Watson")
    assert split_full_name("   ") == ("", "")
