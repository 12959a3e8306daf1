import struct
import threading
import time
import warnings

import requests
import urllib3

from print_agent.services import ipp_client
from print_agent.services.ipp_client import (
    IppClient,
    build_get_attributes_request,
    is_successful,
    parse_response,
)


def attr(tag, name, value):
    name = name.encode()
    return struct.pack(">BH", tag, len(name)) + name + struct.pack(">H", len(value)) + value


def response(status=0x0000, body=b""):
    return struct.pack(">BBHi", 1, 1, status, 1) + b"\x04" + body + b"\x03"


def test_request_header_and_attributes_order():
    data = build_get_attributes_request("http://10.0.0.5:631/ipp/print")

    assert data[:8] == b"\x01\x01\x00\x0b" + struct.pack(">i", 12345)
    assert data[8] == 0x01
    assert data[-1] == 0x03

    body = data[9:-1]
    expected = (
        attr(0x47, "attributes-charset", b"utf-8")
        + attr(0x48, "attributes-natural-language", b"en")
        + attr(0x45, "printer-uri", b"http://10.0.0.5:631/ipp/print")
        + attr(0x44, "requested-attributes", b"all")
    )
    assert body == expected


def test_parse_single_keyword_attribute():
    data = response(body=attr(0x44, "printer-name", b"MyPrinter"))
    assert parse_response(data) == {
        "ipp-status-code": "0x0000 (successful-ok)",
        "printer-name": "MyPrinter",
    }


def test_parse_error_status_keeps_attributes():
    data = response(status=0x0406, body=attr(0x41, "status-message", b"not found "))
    result = parse_response(data)
    assert result["ipp-status-code"] == "0x0406"
    assert result["status-message"] == "not found"
    assert not is_successful(result)


def test_parse_additional_values_are_joined():
    body = (
        attr(0x44, "document-format-supported", b"application/pdf")
        + struct.pack(">BH", 0x44, 0) + struct.pack(">H", 10) + b"text/plain"
        + struct.pack(">BH", 0x44, 0) + struct.pack(">H", 10) + b"image/jpeg"
    )
    result = parse_response(response(body=body))
    assert result["document-format-supported"] == "application/pdf, text/plain, image/jpeg"


def test_parse_integer_widths_are_signed():
    body = (
        attr(0x21, "one", b"\xff")
        + attr(0x21, "two", b"\xff\xfe")
        + attr(0x23, "four", struct.pack(">i", 3))
        + attr(0x21, "odd", b"\x01\xff\x02")
    )
    result = parse_response(response(body=body))
    assert result["one"] == "-1"
    assert result["two"] == "-2"
    assert result["four"] == "3"
    assert result["odd"] == "int_val(1, -1, 2)"


def test_parse_booleans():
    body = attr(0x22, "a", b"\x01") + attr(0x22, "b", b"\x00") + attr(0x22, "c", b"")
    result = parse_response(response(body=body))
    assert (result["a"], result["b"], result["c"]) == ("true", "false", "invalid_bool")


def test_parse_skips_delimiters_and_stops_at_end_tag():
    body = attr(0x44, "first", b"x") + b"\x01\x05" + attr(0x44, "second", b"y")
    data = response(body=body) + attr(0x44, "after-end", b"z")
    result = parse_response(data)
    assert result["first"] == "x"
    assert result["second"] == "y"
    assert "after-end" not in result


def test_truncated_name_length_returns_partial_results():
    good = attr(0x44, "printer-name", b"MyPrinter")
    bad = struct.pack(">BH", 0x44, 40) + b"short"
    data = struct.pack(">BBHi", 1, 1, 0, 1) + b"\x04" + good + bad
    result = parse_response(data)
    assert result == {
        "ipp-status-code": "0x0000 (successful-ok)",
        "printer-name": "MyPrinter",
    }


def test_truncated_value_length_stops():
    data = struct.pack(">BBHi", 1, 1, 0, 1) + b"\x04" + struct.pack(">BH", 0x44, 4) + b"name" + b"\x00"
    assert parse_response(data) == {"ipp-status-code": "0x0000 (successful-ok)"}


def test_too_short_response_is_empty():
    assert parse_response(b"\x01\x01\x00") == {}


class FakeResponse:
    def __init__(self, status_code=200, content=b""):
        self.status_code = status_code
        self.content = content

    @property
    def ok(self):
        return self.status_code < 400


def test_client_decodes_and_adds_raw_hex(monkeypatch):
    client = IppClient(timeout=1)
    payload = response(body=attr(0x41, "printer-make-and-model", b"Acme Laser"))
    calls = []

    def fake_post(url, data, headers, timeout):
        calls.append((url, headers, timeout))
        return FakeResponse(content=payload)

    monkeypatch.setattr(client._session, "post", fake_post)
    result = client.get_printer_attributes("http://10.0.0.5:631/ipp/print")

    assert result["printer-make-and-model"] == "Acme Laser"
    assert result[ipp_client.RAW_HEX_KEY].startswith("01 01 00 00")
    assert calls[0][1]["Content-Type"] == "application/ipp"
    assert is_successful(result)


def test_client_returns_none_on_http_error(monkeypatch):
    client = IppClient(timeout=1)
    monkeypatch.setattr(client._session, "post", lambda *a, **kw: FakeResponse(status_code=500))
    assert client.get_printer_attributes("http://10.0.0.5:631/ipp/print") is None


def test_client_returns_none_on_connection_error(monkeypatch):
    client = IppClient(timeout=1)

    def boom(*a, **kw):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(client._session, "post", boom)
    assert client.get_printer_attributes("http://10.0.0.5:631/ipp/print") is None


def test_trust_flag_only_affects_its_own_session():
    trusting = IppClient(trust_any_certificate=True)
    strict = IppClient(trust_any_certificate=False)
    assert trusting._session.verify is False
    assert strict._session.verify is True
    assert requests.Session().verify is True


def test_concurrent_trusting_calls_only_silence_their_own_hosts(monkeypatch):
    monkeypatch.setattr(ipp_client, "_silenced_hosts", set())
    client = IppClient(timeout=1, trust_any_certificate=True)

    def slow_post(url, data, headers, timeout):
        time.sleep(0.01)
        return FakeResponse(content=response())

    monkeypatch.setattr(client._session, "post", slow_post)
    insecure = urllib3.exceptions.InsecureRequestWarning

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", insecure)
        threads = [
            threading.Thread(target=client.get_printer_attributes,
                             args=(f"https://10.0.0.{n % 5 + 1}:631/ipp/print",))
            for n in range(50)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        ignores = [f for f in warnings.filters if f[0] == "ignore" and f[2] is insecure]
        assert len(ignores) == 5
        assert all(f[1] is not None and f[1].pattern for f in ignores)

        warnings.warn("Unverified HTTPS request is being made to host '10.0.0.3'. "
                      "Adding certificate verification is strongly advised.", insecure)
        warnings.warn("Unverified HTTPS request is being made to host 'example.com'. "
                      "Adding certificate verification is strongly advised.", insecure)

    assert ["example.com" in str(w.message) for w in caught] == [True]


def test_plain_http_and_strict_clients_leave_filters_alone(monkeypatch):
    monkeypatch.setattr(ipp_client, "_silenced_hosts", set())
    trusting = IppClient(timeout=1, trust_any_certificate=True)
    strict = IppClient(timeout=1, trust_any_certificate=False)
    for client in (trusting, strict):
        monkeypatch.setattr(client._session, "post",
                            lambda *a, **kw: FakeResponse(content=response()))

    with warnings.catch_warnings():
        before = list(warnings.filters)
        trusting.get_printer_attributes("http://10.0.0.5:631/ipp/print")
        strict.get_printer_attributes("https://10.0.0.5:631/ipp/print")
        assert warnings.filters == before
