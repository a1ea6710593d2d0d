"""Unit tests for the Gemini gateway."""
# pylint: disable=missing-function-docstring

import asyncio
import base64
import http.client
import os
import unittest
from unittest.mock import patch

from image_editor import config, gateway
from image_editor.codec import ImageArtifact
from image_editor.errors import (
    ContentBlocked,
    GatewayFailure,
    MissingCredential,
    MissingPrompt,
    NoImageReturned,
)


def _response(*parts, finish_reason="STOP"):
    return {"candidates": [{"content": {"parts": list(parts)}, "finishReason": finish_reason}]}


def _inline(mime_type: str, raw: bytes):
    return {"inlineData": {"mimeType": mime_type, "data": base64.b64encode(raw).decode("utf-8")}}


class ModelFallbackTests(unittest.TestCase):
    """Validate model selection fallback order."""
    def setUp(self):
        self.env_patch = patch.dict(os.environ, {}, clear=True)
        self.env_patch.start()
        config._state.model_id = None  # pylint: disable=protected-access

    def tearDown(self):
        config._state.model_id = None  # pylint: disable=protected-access
        self.env_patch.stop()

    def test_default_model_used_when_none_configured(self):
        self.assertEqual(config.get_current_model(), config.DEFAULT_MODEL_ID)

    def test_env_overrides_default(self):
        os.environ["IMAGEN_MODEL_ID"] = "env-model"
        self.assertEqual(config.get_current_model(), "env-model")

    def test_runtime_overrides_env(self):
        os.environ["IMAGEN_MODEL_ID"] = "env-model"
        config.set_current_model("runtime-model")
        self.assertEqual(config.get_current_model(), "runtime-model")

    def test_set_current_model_rejects_blank(self):
        with self.assertRaises(ValueError):
            config.set_current_model("  ")

    def test_pinned_gateway_model_wins(self):
        config.set_current_model("runtime-model")
        self.assertEqual(gateway.GeminiGateway(model_id="pinned").model_id, "pinned")
        self.assertEqual(gateway.GeminiGateway().model_id, "runtime-model")


class RequestBodyTests(unittest.TestCase):
    """Request construction."""

    def test_edit_body_sends_every_image_then_prompt(self):
        images = [ImageArtifact(b"one", "image/png"), ImageArtifact(b"two", "image/jpeg")]
        body = gateway.build_edit_request_body("add a hat", images)

        parts = body["contents"][0]["parts"]
        self.assertEqual(len(parts), 3)
        self.assertEqual(parts[0]["inlineData"]["mimeType"], "image/png")
        self.assertEqual(base64.b64decode(parts[0]["inlineData"]["data"]), b"one")
        self.assertEqual(parts[1]["inlineData"]["mimeType"], "image/jpeg")
        self.assertEqual(parts[2]["text"], "add a hat")
        self.assertEqual(body["generationConfig"]["responseModalities"], ["TEXT", "IMAGE"])

    def test_edit_body_requires_images(self):
        with self.assertRaises(ValueError):
            gateway.build_edit_request_body("add a hat", [])

    def test_generate_body_carries_aspect_ratio(self):
        body = gateway.build_request_body("a red apple", aspect_ratio="16:9")
        self.assertEqual(body["contents"][0]["parts"], [{"text": "a red apple"}])
        self.assertEqual(body["generationConfig"]["imageConfig"]["aspectRatio"], "16:9")

    def test_empty_prompt_is_missing_prompt(self):
        with self.assertRaises(MissingPrompt):
            gateway.build_request_body("   ")

    def test_build_url(self):
        self.assertEqual(
            gateway.build_url(base_url="https://host/models/", model_id="m"),
            "https://host/models/m:generateContent",
        )


class ParseResponseTests(unittest.TestCase):
    """Response normalization."""

    def test_image_and_text_parts(self):
        result = gateway.parse_response(_response({"text": "Here you go"}, _inline("image/png", b"png")))
        self.assertEqual(result.note, "Here you go")
        self.assertEqual(result.image, "data:image/png;base64," + base64.b64encode(b"png").decode("utf-8"))

    def test_last_text_part_wins(self):
        result = gateway.parse_response(
            _response({"text": "first"}, _inline("image/png", b"png"), {"text": "second"})
        )
        self.assertEqual(result.note, "second")

    def test_text_only_is_no_image_returned(self):
        with self.assertRaises(NoImageReturned):
            gateway.parse_response(_response({"text": "I cannot draw that"}))

    def test_safety_finish_reason_is_content_blocked(self):
        with self.assertRaises(ContentBlocked) as ctx:
            gateway.parse_response(_response(finish_reason="SAFETY"))
        self.assertEqual(ctx.exception.reason, "SAFETY")

    def test_prompt_feedback_block_is_content_blocked(self):
        with self.assertRaises(ContentBlocked):
            gateway.parse_response({"promptFeedback": {"blockReason": "PROHIBITED_CONTENT"}})

    def test_empty_response_is_no_image_returned(self):
        with self.assertRaises(NoImageReturned):
            gateway.parse_response({})

    @patch("image_editor.gateway._http_get_bytes")
    def test_file_uri_part_is_downloaded(self, mock_get):
        mock_get.return_value = (b"remote", "image/webp")
        result = gateway.parse_response(_response({"fileData": {"fileUri": "https://files/x"}}))
        mock_get.assert_called_once_with("https://files/x")
        self.assertTrue(result.image.startswith("data:image/webp;base64,"))


class GatewayCallTests(unittest.TestCase):
    """generate/edit round trips with the HTTP layer mocked."""

    def setUp(self):
        config._state.model_id = None  # pylint: disable=protected-access

    @patch("image_editor.gateway._http_post_json")
    def test_edit_posts_to_model_endpoint(self, mock_post):
        mock_post.return_value = _response(_inline("image/png", b"edited"))
        gw = gateway.GeminiGateway(model_id="edit-model")

        result = asyncio.run(gw.edit([ImageArtifact(b"src", "image/png")], "make it green", "test-key"))

        called_url, payload, api_key = mock_post.call_args[0]
        self.assertTrue(called_url.endswith("edit-model:generateContent"))
        self.assertEqual(api_key, "test-key")
        self.assertEqual(payload["contents"][0]["parts"][-1]["text"], "make it green")
        self.assertTrue(result.image.startswith("data:image/png;base64,"))

    @patch("image_editor.gateway._http_post_json")
    def test_generate_posts_prompt_only(self, mock_post):
        mock_post.return_value = _response(_inline("image/png", b"new"))
        gw = gateway.GeminiGateway(model_id="gen-model")

        asyncio.run(gw.generate("a red apple", "test-key"))

        payload = mock_post.call_args[0][1]
        self.assertEqual(payload["contents"][0]["parts"], [{"text": "a red apple"}])

    @patch("image_editor.gateway._http_post_json")
    def test_missing_credential_fails_before_request(self, mock_post):
        gw = gateway.GeminiGateway()
        with self.assertRaises(MissingCredential):
            asyncio.run(gw.generate("a red apple", ""))
        with self.assertRaises(MissingCredential):
            asyncio.run(gw.edit([ImageArtifact(b"src")], "x", None))
        mock_post.assert_not_called()

    @patch("image_editor.gateway._http_post_json")
    def test_transport_failure_propagates(self, mock_post):
        mock_post.side_effect = GatewayFailure("API error 403: forbidden", status=403)
        gw = gateway.GeminiGateway()
        with self.assertRaises(GatewayFailure) as ctx:
            asyncio.run(gw.generate("a red apple", "bad-key"))
        self.assertEqual(ctx.exception.status, 403)
        self.assertEqual(mock_post.call_count, 1)


class MalformedResponseTests(unittest.TestCase):
    """Replies that are not shaped like generateContent output."""

    def test_non_object_body(self):
        for body in (["unexpected"], "text", 42):
            with self.assertRaises(GatewayFailure) as ctx:
                gateway.parse_response(body)
            self.assertIn("Unexpected API response", str(ctx.exception))

    def test_non_object_part(self):
        with self.assertRaises(GatewayFailure):
            gateway.parse_response(_response("just a string"))

    def test_candidates_not_a_list(self):
        with self.assertRaises(GatewayFailure):
            gateway.parse_response({"candidates": {"content": {}}})

    def test_prompt_feedback_not_an_object(self):
        with self.assertRaises(GatewayFailure):
            gateway.parse_response({"promptFeedback": "BLOCKED"})

    @patch("image_editor.gateway._http_post_json")
    def test_gateway_reports_unexpected_body(self, mock_post):
        mock_post.return_value = ["unexpected"]
        with self.assertRaises(GatewayFailure):
            asyncio.run(gateway.GeminiGateway(model_id="m").generate("a red apple", "test-key"))


class TransportErrorTests(unittest.TestCase):
    """Low-level HTTP failures become GatewayFailure."""

    @patch("image_editor.gateway.request.urlopen")
    def test_incomplete_read_on_post(self, mock_urlopen):
        mock_urlopen.side_effect = http.client.IncompleteRead(b"partial")
        with self.assertRaises(GatewayFailure) as ctx:
            gateway._http_post_json("https://host/m:generateContent", {}, "k")  # pylint: disable=protected-access
        self.assertIsNone(ctx.exception.status)

    @patch("image_editor.gateway.request.urlopen")
    def test_bad_status_line_on_get(self, mock_urlopen):
        mock_urlopen.side_effect = http.client.BadStatusLine("garbage")
        with self.assertRaises(GatewayFailure):
            gateway._http_get_json("https://host/models", "k")  # pylint: disable=protected-access

    @patch("image_editor.gateway.request.urlopen")
    def test_remote_disconnect_on_download(self, mock_urlopen):
        mock_urlopen.side_effect = http.client.RemoteDisconnected("closed")
        with self.assertRaises(GatewayFailure):
            gateway._http_get_bytes("https://files/x")  # pylint: disable=protected-access

    @patch("image_editor.gateway.request.urlopen")
    def test_invalid_json_body(self, mock_urlopen):
        mock_urlopen.return_value.__enter__.return_value.read.return_value = b"<html>oops</html>"
        with self.assertRaises(GatewayFailure) as ctx:
            gateway._http_get_json("https://host/models", "k")  # pylint: disable=protected-access
        self.assertIn("Failed to read API response", str(ctx.exception))


class ModelListingTests(unittest.TestCase):
    """Model discovery and key validation."""

    @patch("image_editor.gateway._http_get_json")
    def test_list_models_follows_pages_and_filters(self, mock_get):
        mock_get.side_effect = [
            {
                "models": [
                    {"name": "models/gemini-2.5-flash-image-preview", "displayName": "Flash Image"},
                    {"name": "models/gemini-2.5-pro", "supportedGenerationMethods": ["generateContent"]},
                ],
                "nextPageToken": "page2",
            },
            {"models": [{"name": "models/gemini-3-pro-image-preview"}]},
        ]

        models = gateway.list_available_models("test-key")

        self.assertEqual([m.name for m in models], ["gemini-2.5-flash-image-preview", "gemini-3-pro-image-preview"])
        self.assertIn("pageToken=page2", mock_get.call_args_list[1][0][0])

    def test_list_models_requires_key(self):
        with self.assertRaises(MissingCredential):
            gateway.list_available_models(None)

    @patch("image_editor.gateway._http_get_json")
    def test_validate_api_key_reports_failure(self, mock_get):
        mock_get.side_effect = GatewayFailure("API error 400: API key not valid", status=400)
        result = gateway.validate_api_key("bad-key")
        self.assertFalse(result["valid"])
        self.assertIn("API key not valid", result["error"])

    @patch("image_editor.gateway._http_get_json")
    def test_validate_api_key_counts_models(self, mock_get):
        mock_get.return_value = {
            "models": [{"name": "models/gemini-2.5-flash-image"}, {"name": "models/text-embedding-004"}]
        }
        result = gateway.validate_api_key("good-key")
        self.assertEqual(result, {"valid": True, "total_models": 2, "image_models": 1})


if __name__ == "__main__":
    unittest.main()
