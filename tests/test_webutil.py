import pytest

from suipanel.webutil import (
    Msg,
    domain_allowed,
    get_hostname,
    get_remote_ip,
    json_msg,
    json_msg_obj,
    json_obj,
    pure_json_msg,
)


def test_json_msg_success():
    assert json_msg("save", None).to_dict() == {"success": True, "msg": "save", "obj": None}


def test_json_msg_error_appends_error_text():
    reply = json_msg("save", ValueError("boom"))
    assert reply.success is False
    assert reply.msg == "save: boom"


def test_json_obj_carries_object():
    data = {"a": [1, 2]}
    reply = json_obj(data, None)
    assert reply == Msg(success=True, msg="", obj=data)


def test_json_msg_obj_error_keeps_object():
    reply = json_msg_obj("x", [1], RuntimeError("bad"))
    assert reply.obj == [1]
    assert reply.msg == "x: bad"
    assert reply.success is False


def test_pure_json_msg():
    assert pure_json_msg(False, "Invalid login").to_dict() == {
        "success": False,
        "msg": "Invalid login",
        "obj": None,
    }


def test_remote_ip_from_forwarded_header():
    headers = {"x-forwarded-for": "198.51.100.4,203.0.113.9"}
    assert get_remote_ip(headers, "192.0.2.1:1234") == "198.51.100.4"


@pytest.mark.parametrize(
    "remote, expected",
    [("192.0.2.7:5555", "192.0.2.7"), ("[2001:db8::1]:443", "2001:db8::1"), ("nonsense", "")],
)
def test_remote_ip_from_address(remote, expected):
    assert get_remote_ip({}, remote) == expected


@pytest.mark.parametrize(
    "host, expected",
    [
        ("example.com", "example.com"),
        ("example.com:8080", "example.com"),
        ("[::1]:2095", "[::1]"),
        ("[::1]", ""),
    ],
)
def test_get_hostname(host, expected):
    assert get_hostname(host) == expected


def test_domain_allowed():
    assert domain_allowed("example.com:443", "example.com") is True
    assert domain_allowed("example.com", "example.com") is True
    assert domain_allowed("other.example.com", "example.com") is False