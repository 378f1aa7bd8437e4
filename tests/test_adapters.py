import re
from unittest.mock import MagicMock

import pytest
import requests

from condonotify.errors import UnknownProviderError
from condonotify.outbound import GatewaySettings, Provider, build_adapter
from condonotify.outbound.dry_run import DryRunAdapter
from condonotify.outbound.evolution import EvolutionAdapter
from condonotify.outbound.gateway import (
    ERROR_API,
    ERROR_AUTH,
    ERROR_CONNECTION,
    ERROR_HTTP,
    ERROR_INVALID_ENDPOINT,
    ERROR_SESSION_DISCONNECTED,
)
from condonotify.outbound.wppconnect import WppconnectAdapter
from condonotify.outbound.zapi import ZapiAdapter
from condonotify.outbound.zpro import ZproAdapter

from tests.conftest import make_response

PHONE = "5511987654321"
HTML_PAGE = "<!DOCTYPE html><html><body>502 Bad Gateway</body></html>"


def _config(provider, **kwargs):
    return GatewaySettings(
        provider=provider,
        api_url=kwargs.pop("api_url", "https://gw.example.com/"),
        api_key=kwargs.pop("api_key", "secret-key"),
        instance_id=kwargs.pop("instance_id", "inst-1"),
        **kwargs,
    )


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


# ---------------------------------------------------------------------
# Z-PRO legacy
# ---------------------------------------------------------------------
def test_zpro_legacy_sends_text_via_params_get(session):
    session.get.return_value = make_response(200, {"messageId": "wamid-1"})

    result = ZproAdapter(session=session).send(_config("zpro"), "+55 (11) 98765-4321", "Olá")

    assert result.success
    assert result.message_id == "wamid-1"
    url = session.get.call_args.args[0]
    params = session.get.call_args.kwargs["params"]
    assert url == "https://gw.example.com/params/"
    assert params == {
        "body": "Olá",
        "number": PHONE,
        "externalKey": "inst-1",
        "bearertoken": "secret-key",
        "isClosed": "false",
    }
    session.post.assert_not_called()


@pytest.mark.parametrize("instance_id", ["", "zpro-embedded"])
def test_zpro_external_key_falls_back_to_api_key(session, instance_id):
    session.get.return_value = make_response(200, {"id": "1"})

    ZproAdapter(session=session).send(_config("zpro", instance_id=instance_id), PHONE, "hi")

    assert session.get.call_args.kwargs["params"]["externalKey"] == "secret-key"


def test_zpro_legacy_image_posts_to_url_endpoint(session):
    session.post.return_value = make_response(200, {"id": "img-1"})

    result = ZproAdapter(session=session).send(
        _config("zpro"), PHONE, "caption", image_url="https://cdn/x.jpg"
    )

    assert result.success
    assert session.post.call_args.args[0] == "https://gw.example.com/url"
    assert session.post.call_args.kwargs["json"]["mediaUrl"] == "https://cdn/x.jpg"
    assert session.post.call_args.kwargs["headers"]["Authorization"] == "Bearer secret-key"


def test_zpro_reads_nested_key_id(session):
    session.get.return_value = make_response(200, {"key": {"id": "nested-1"}})

    result = ZproAdapter(session=session).send(_config("zpro"), PHONE, "hi")

    assert result.message_id == "nested-1"


def test_zpro_synthesizes_tracking_id_when_accepted_without_id(session):
    session.get.return_value = make_response(200, {"status": "sent", "id": "sent"})

    result = ZproAdapter(session=session).send(_config("zpro"), PHONE, "hi")

    assert result.success
    assert re.fullmatch(r"zpro_\d+_[0-9a-z]{9}", result.message_id)


def test_zpro_session_disconnected(session):
    session.get.return_value = make_response(400, {"error": "ERR_API_REQUIRES_SESSION"})

    result = ZproAdapter(session=session).send(_config("zpro"), PHONE, "hi")

    assert not result.success
    assert result.error_code == ERROR_SESSION_DISCONNECTED
    assert "QR code" in result.error


def test_zpro_provider_error_on_200_is_a_failure(session):
    session.get.return_value = make_response(200, {"error": "Number not on WhatsApp"})

    result = ZproAdapter(session=session).send(_config("zpro"), PHONE, "hi")

    assert not result.success
    assert result.error == "Number not on WhatsApp"
    assert result.error_code == ERROR_API


def test_zpro_http_error_uses_provider_message(session):
    session.get.return_value = make_response(500, {"message": "Internal failure"})

    result = ZproAdapter(session=session).send(_config("zpro"), PHONE, "hi")

    assert not result.success
    assert result.error == "Internal failure"
    assert result.error_code == ERROR_HTTP


def test_zpro_html_response(session):
    session.get.return_value = make_response(200, text=HTML_PAGE)

    result = ZproAdapter(session=session).send(_config("zpro"), PHONE, "hi")

    assert not result.success
    assert result.error_code == ERROR_INVALID_ENDPOINT


# ---------------------------------------------------------------------
# Z-PRO official
# ---------------------------------------------------------------------
def test_zpro_official_sends_text(session):
    session.post.return_value = make_response(200, {"wamid": "wamid.HBg"})

    result = ZproAdapter(session=session).send(
        _config("zpro", use_official_api=True), PHONE, "Olá"
    )

    assert result.success
    assert result.message_id == "wamid.HBg"
    assert session.post.call_args.args[0] == "https://gw.example.com/SendMessageAPIText"
    assert session.post.call_args.kwargs["json"] == {"number": PHONE, "body": "Olá"}
    assert session.post.call_args.kwargs["headers"]["Authorization"] == "Bearer secret-key"
    session.get.assert_not_called()


def test_zpro_official_image_is_sent_as_base64(session):
    session.get.return_value = make_response(
        200, headers={"content-type": "image/png"}, content=b"\x89PNG"
    )
    session.post.return_value = make_response(200, {"id": "media-1"})

    result = ZproAdapter(session=session).send(
        _config("zpro", use_official_api=True), PHONE, "caption", image_url="https://cdn/x.png"
    )

    assert result.success
    assert session.post.call_args.args[0] == "https://gw.example.com/SendMediaAPIBase64"
    payload = session.post.call_args.kwargs["json"]
    assert payload["mediatype"] == "image"
    assert payload["base64"] == "data:image/png;base64,iVBORw=="


def test_zpro_official_falls_back_to_text_when_image_download_fails(session):
    session.get.return_value = make_response(404, text="missing")
    session.post.return_value = make_response(200, {"id": "txt-1"})

    result = ZproAdapter(session=session).send(
        _config("zpro", use_official_api=True), PHONE, "caption", image_url="https://cdn/x.png"
    )

    assert result.success
    assert session.post.call_args.args[0] == "https://gw.example.com/SendMessageAPIText"


def test_zpro_official_connection_check_maps_auth_errors(session):
    session.post.return_value = make_response(401, {"error": "unauthorized"})

    result = ZproAdapter(session=session).check_connection(_config("zpro", use_official_api=True))

    assert not result.success
    assert result.error_code == ERROR_AUTH


def test_zpro_official_connection_check_accepts_any_json(session):
    session.post.return_value = make_response(400, {"error": "invalid number"})

    result = ZproAdapter(session=session).check_connection(_config("zpro", use_official_api=True))

    assert result.success


# ---------------------------------------------------------------------
# Z-PRO approved templates
# ---------------------------------------------------------------------
def test_zpro_template_body_payload(session):
    session.post.return_value = make_response(200, {"messageId": "wamid-9"})

    result = ZproAdapter(session=session).send_template(
        _config("zpro", instance_id="zpro-embedded"),
        "+55 11 98765-4321",
        "encomenda_management_5",
        "pt_BR",
        ["Ana", "482913"],
        media_url="https://cdn/pkg.jpg",
    )

    assert result.success
    assert result.message_id == "wamid-9"
    assert session.post.call_args.args[0] == "https://gw.example.com/templateBody"
    assert session.post.call_args.kwargs["headers"]["Authorization"] == "Bearer secret-key"
    assert session.post.call_args.kwargs["json"] == {
        "number": PHONE,
        "externalKey": "secret-key",
        "templateName": "encomenda_management_5",
        "language": "pt_BR",
        "components": [
            {"type": "header", "parameters": [{"type": "image", "image": {"link": "https://cdn/pkg.jpg"}}]},
            {
                "type": "body",
                "parameters": [{"type": "text", "text": "Ana"}, {"type": "text", "text": "482913"}],
            },
        ],
    }


def test_zpro_template_reads_nested_data_key_id(session):
    session.post.return_value = make_response(200, {"data": {"key": {"id": "ABC"}}})

    result = ZproAdapter(session=session).send_template(_config("zpro"), PHONE, "t", "pt_BR", ["x"])

    assert result.message_id == "ABC"


def test_zpro_template_http_error_uses_provider_message(session):
    session.post.return_value = make_response(400, {"error": "Template paused"})

    result = ZproAdapter(session=session).send_template(_config("zpro"), PHONE, "t", "pt_BR", ["x"])

    assert not result.success
    assert result.error == "Template paused"
    assert result.error_code == ERROR_HTTP


def test_zpro_template_session_disconnected(session):
    session.post.return_value = make_response(400, {"error": "ERR_API_REQUIRES_SESSION"})

    result = ZproAdapter(session=session).send_template(_config("zpro"), PHONE, "t", "pt_BR", ["x"])

    assert result.error_code == ERROR_SESSION_DISCONNECTED


def test_zpro_template_connection_error(session):
    session.post.side_effect = requests.ConnectionError("refused")

    result = ZproAdapter(session=session).send_template(_config("zpro"), PHONE, "t", "pt_BR", ["x"])

    assert result.error_code == ERROR_CONNECTION


# ---------------------------------------------------------------------
# Z-API
# ---------------------------------------------------------------------
def test_zapi_sends_text_with_credentials_in_path(session):
    session.post.return_value = make_response(200, {"zapiMessageId": "z-1", "messageId": "m-1"})

    result = ZapiAdapter(session=session).send(_config("zapi"), PHONE, "Olá")

    assert result.success
    assert result.message_id == "z-1"
    assert (
        session.post.call_args.args[0]
        == "https://gw.example.com/instances/inst-1/token/secret-key/send-text"
    )
    assert session.post.call_args.kwargs["json"] == {"phone": PHONE, "message": "Olá"}


def test_zapi_image_variant(session):
    session.post.return_value = make_response(200, {"messageId": "m-1"})

    result = ZapiAdapter(session=session).send(
        _config("zapi"), PHONE, "caption", image_url="https://cdn/x.jpg"
    )

    assert result.message_id == "m-1"
    assert session.post.call_args.args[0].endswith("/send-image")
    assert session.post.call_args.kwargs["json"] == {
        "phone": PHONE,
        "image": "https://cdn/x.jpg",
        "caption": "caption",
    }


def test_zapi_without_message_id_is_a_failure(session):
    session.post.return_value = make_response(200, {"value": False})

    result = ZapiAdapter(session=session).send(_config("zapi"), PHONE, "hi")

    assert not result.success


def test_zapi_connection_error_masks_the_api_key(session):
    session.post.side_effect = requests.ConnectionError(
        "Max retries exceeded with url: /instances/inst-1/token/secret-key/send-text"
    )

    result = ZapiAdapter(session=session).send(_config("zapi"), PHONE, "hi")

    assert not result.success
    assert result.error_code == ERROR_CONNECTION
    assert "secret-key" not in result.error


# ---------------------------------------------------------------------
# Evolution
# ---------------------------------------------------------------------
def test_evolution_sends_text_with_apikey_header(session):
    session.post.return_value = make_response(201, {"key": {"id": "BAE5"}, "status": "PENDING"})

    result = EvolutionAdapter(session=session).send(_config("evolution"), PHONE, "Olá")

    assert result.success
    assert result.message_id == "BAE5"
    assert session.post.call_args.args[0] == "https://gw.example.com/message/sendText/inst-1"
    assert session.post.call_args.kwargs["headers"]["apikey"] == "secret-key"
    assert session.post.call_args.kwargs["json"] == {"number": PHONE, "text": "Olá"}


def test_evolution_media_variant(session):
    session.post.return_value = make_response(201, {"key": {"id": "BAE6"}})

    EvolutionAdapter(session=session).send(
        _config("evolution"), PHONE, "caption", image_url="https://cdn/x.jpg"
    )

    assert session.post.call_args.args[0] == "https://gw.example.com/message/sendMedia/inst-1"
    assert session.post.call_args.kwargs["json"]["mediatype"] == "image"


def test_evolution_error_messages_list_is_joined(session):
    session.post.return_value = make_response(
        400, {"status": 400, "message": ["number not exists", "retry later"]}
    )

    result = EvolutionAdapter(session=session).send(_config("evolution"), PHONE, "hi")

    assert not result.success
    assert result.error == "number not exists; retry later"


# ---------------------------------------------------------------------
# WPPConnect
# ---------------------------------------------------------------------
def test_wppconnect_sends_text(session):
    session.post.return_value = make_response(201, {"status": "success", "id": "true_5511@c.us_3EB0"})

    result = WppconnectAdapter(session=session).send(_config("wppconnect"), PHONE, "Olá")

    assert result.success
    assert result.message_id == "true_5511@c.us_3EB0"
    assert session.post.call_args.args[0] == "https://gw.example.com/api/inst-1/send-message"
    assert session.post.call_args.kwargs["json"] == {
        "phone": PHONE,
        "message": "Olá",
        "isGroup": False,
    }


def test_wppconnect_status_error_on_http_200_is_a_failure(session):
    session.post.return_value = make_response(200, {"status": "error", "id": None})

    result = WppconnectAdapter(session=session).send(_config("wppconnect"), PHONE, "hi")

    assert result.success is False
    assert result.error_code == ERROR_API


def test_wppconnect_file_variant(session):
    session.post.return_value = make_response(200, {"status": "success", "id": "f-1"})

    WppconnectAdapter(session=session).send(
        _config("wppconnect"), PHONE, "caption", image_url="https://cdn/x.jpg"
    )

    assert session.post.call_args.args[0].endswith("/send-file-url")
    assert session.post.call_args.kwargs["json"]["url"] == "https://cdn/x.jpg"


@pytest.mark.parametrize(
    "adapter_cls, provider",
    [
        (ZapiAdapter, "zapi"),
        (EvolutionAdapter, "evolution"),
        (WppconnectAdapter, "wppconnect"),
    ],
)
def test_html_page_is_invalid_endpoint_for_every_variant(session, adapter_cls, provider):
    session.post.return_value = make_response(200, text=HTML_PAGE)

    result = adapter_cls(session=session).send(_config(provider), PHONE, "hi")

    assert not result.success
    assert result.error_code == ERROR_INVALID_ENDPOINT


# ---------------------------------------------------------------------
# Factory / dry run
# ---------------------------------------------------------------------
@pytest.mark.parametrize(
    "provider, adapter_cls",
    [
        ("zpro", ZproAdapter),
        ("ZAPI", ZapiAdapter),
        (" evolution ", EvolutionAdapter),
        (Provider.WPPCONNECT, WppconnectAdapter),
    ],
)
def test_build_adapter_selects_each_provider(provider, adapter_cls):
    assert isinstance(build_adapter(provider), adapter_cls)


def test_build_adapter_rejects_unknown_provider():
    with pytest.raises(UnknownProviderError) as exc_info:
        build_adapter("twilio")
    assert exc_info.value.provider == "twilio"


def test_dry_run_adapter_never_touches_the_network(session):
    adapter = build_adapter("zpro", session=session, dry_run=True)

    result = adapter.send(_config("zpro"), PHONE, "hi", image_url="https://cdn/x.jpg")

    assert isinstance(adapter, DryRunAdapter)
    assert result.success
    assert result.message_id.startswith("dryrun_")
    session.get.assert_not_called()
    session.post.assert_not_called()


def test_dry_run_template_is_simulated(session):
    adapter = build_adapter("zpro", session=session, dry_run=True)

    result = adapter.send_template(_config("zpro"), PHONE, "encomenda", "pt_BR", ["Ana"])

    assert result.message_id.startswith("dryrun_")
    session.post.assert_not_called()
