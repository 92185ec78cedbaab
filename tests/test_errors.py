"""
Fault classification and user-facing status text.
"""
from live_session.errors import (
    AcquisitionError,
    FaultCategory,
    FaultHandler,
    LiveSessionError,
    TransportError,
)


class TestAcquisitionClassification:
    def test_microphone(self):
        assert FaultHandler.classify_acquisition_error(AcquisitionError("microphone", "denied")) == (
            FaultCategory.MICROPHONE_UNAVAILABLE
        )

    def test_location(self):
        assert FaultHandler.classify_acquisition_error(AcquisitionError("location")) == (
            FaultCategory.LOCATION_UNAVAILABLE
        )

    def test_audio_output(self):
        assert FaultHandler.classify_acquisition_error(AcquisitionError("audio_output")) == (
            FaultCategory.OUTPUT_UNAVAILABLE
        )

    def test_message_includes_detail(self):
        err = AcquisitionError("microphone", "permission denied")
        assert str(err) == "microphone unavailable: permission denied"
        assert str(AcquisitionError("location")) == "location unavailable"
        assert isinstance(err, LiveSessionError)


class TestTransportClassification:
    """Test transport error classification."""

    def test_remote_close(self):
        assert FaultHandler.classify_transport_error(None) == FaultCategory.CLOSED

    def test_auth_error(self):
        assert FaultHandler.classify_transport_error(TransportError("API key not valid")) == FaultCategory.AUTH_FAILED
        assert FaultHandler.classify_transport_error(Exception("HTTP 401")) == FaultCategory.AUTH_FAILED

    def test_rate_limit(self):
        assert FaultHandler.classify_transport_error(Exception("429 RESOURCE_EXHAUSTED")) == FaultCategory.RATE_LIMITED
        assert FaultHandler.classify_transport_error(Exception("quota exceeded")) == FaultCategory.RATE_LIMITED

    def test_network_error(self):
        assert FaultHandler.classify_transport_error(Exception("Connection reset")) == FaultCategory.NETWORK_ERROR
        assert FaultHandler.classify_transport_error(ConnectionResetError()) == FaultCategory.NETWORK_ERROR
        assert FaultHandler.classify_transport_error(TimeoutError()) == FaultCategory.NETWORK_ERROR

    def test_unknown_error(self):
        assert FaultHandler.classify_transport_error(Exception("something odd")) == FaultCategory.UNKNOWN_ERROR


class TestUserMessages:
    def test_acquisition_is_system_fault(self):
        assert FaultHandler.get_user_message(FaultCategory.MICROPHONE_UNAVAILABLE) == "System fault."
        assert FaultHandler.get_user_message(FaultCategory.LOCATION_UNAVAILABLE) == "System fault."

    def test_transport_is_connection_fault(self):
        for category in (FaultCategory.CLOSED, FaultCategory.AUTH_FAILED, FaultCategory.UNKNOWN_ERROR):
            assert FaultHandler.get_user_message(category) == "Connection fault."


class TestRedaction:
    def test_secret_like_detail_redacted(self):
        assert FaultHandler.redact("invalid api key AIza...") == "[redacted: potential secret]"
        assert FaultHandler.redact("bad token") == "[redacted: potential secret]"

    def test_plain_detail_kept(self):
        assert FaultHandler.redact("connection reset by peer") == "connection reset by peer"
