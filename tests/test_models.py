"""Tests for Pydantic request and response models."""

from gmail_relay.models import AttachmentSpec, EmailRequest, SendResponse, TemplateBody


class TestEmailRequest:
    def test_camel_case_aliases(self):
        request = EmailRequest.model_validate({
            "to": ["a@b.com"],
            "replyTo": "r@b.com",
            "senderEmail": "s@b.com",
            "senderName": "Sender",
            "refreshToken": "rt",
            "subject": "Hi",
            "text": "x",
        })

        assert request.reply_to == "r@b.com"
        assert request.sender_email == "s@b.com"
        assert request.sender_name == "Sender"
        assert request.refresh_token == "rt"

    def test_snake_case_names_also_accepted(self):
        request = EmailRequest(to="a@b.com", reply_to="r@b.com", refresh_token="rt")
        assert request.reply_to == "r@b.com"

    def test_required_fields_are_optional_in_schema(self):
        request = EmailRequest.model_validate({})
        assert request.to is None
        assert request.subject is None

    def test_template_object(self):
        request = EmailRequest.model_validate({"template": {"html": "<p>{{x}}</p>"}, "data": {"x": 1}})
        assert isinstance(request.template, TemplateBody)
        assert request.template.text is None

    def test_fields_accept_any_json(self):
        request = EmailRequest.model_validate({"fields": {"nested": {"a": [1, 2]}}})
        assert request.fields == {"nested": {"a": [1, 2]}}


class TestAttachmentSpec:
    def test_content_type_alias(self):
        spec = AttachmentSpec.model_validate({"filename": "a.pdf", "contentType": "application/pdf", "url": "https://x"})
        assert spec.content_type == "application/pdf"

    def test_summary_excludes_payload(self):
        spec = AttachmentSpec(filename="a.txt", content="aGVsbG8=")
        assert spec.summary() == {"filename": "a.txt"}

    def test_missing_filename_defaults_to_empty(self):
        assert AttachmentSpec.model_validate({"content": "eA=="}).filename == ""


class TestSendResponse:
    def test_serializes_with_public_names(self):
        response = SendResponse(message_id="m1")
        assert response.model_dump(by_alias=True, exclude_none=True) == {
            "ok": True,
            "messageId": "m1",
            "message": "Email sent successfully",
        }
