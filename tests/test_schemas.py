import pytest
from pydantic import ValidationError

from counterlink.rtc.webrtc import IceCandidate, SessionDescription
from counterlink.signaling.schemas import (
    AnswerMessage,
    CandidateModel,
    DescriptionModel,
    IceCandidateMessage,
    JoinSessionMessage,
    OfferMessage,
    SessionErrorMessage,
    SessionJoinedMessage,
)


def test_offer_uses_exact_wire_field_names() -> None:
    description = SessionDescription(type="offer", sdp="v=0\r\n")
    message = OfferMessage(to="K1", from_="C1", offer=DescriptionModel.from_description(description))

    assert message.to_wire() == {"to": "K1", "from": "C1", "offer": {"type": "offer", "sdp": "v=0\r\n"}}


def test_join_session_wire_shape() -> None:
    message = JoinSessionMessage(session_key=" KIOSK-ABC123 ", counter_id="C1")

    assert message.to_wire() == {"sessionKey": "KIOSK-ABC123", "counterId": "C1"}
    with pytest.raises(ValidationError):
        JoinSessionMessage(session_key="  ", counter_id="C1")


def test_candidate_wire_round_trip() -> None:
    candidate = IceCandidate(
        candidate="candidate:1 1 udp 2122260223 192.0.2.1 50000 typ host",
        sdp_mid="0",
        sdp_mline_index=0,
        username_fragment="abcd",
    )
    wire = IceCandidateMessage(
        to="K1",
        from_="C1",
        candidate=CandidateModel.from_candidate(candidate),
    ).to_wire()

    assert wire["candidate"] == {
        "candidate": candidate.candidate,
        "sdpMid": "0",
        "sdpMLineIndex": 0,
        "usernameFragment": "abcd",
    }
    decoded = IceCandidateMessage.model_validate(wire)
    assert decoded.from_ == "C1"
    assert decoded.candidate.to_candidate() == candidate


def test_answer_round_trip_and_optional_to() -> None:
    answer = SessionDescription(type="answer", sdp="v=0\r\ns=answer\r\n")
    message = AnswerMessage.model_validate({"from": "K1", "answer": answer.to_dict()})

    assert message.to is None
    assert message.from_ == "K1"
    assert message.answer.to_description() == answer


def test_description_type_is_validated() -> None:
    assert DescriptionModel.model_validate({"type": "ANSWER", "sdp": ""}).type == "answer"
    with pytest.raises(ValidationError):
        DescriptionModel.model_validate({"type": "hello", "sdp": ""})
    with pytest.raises(ValueError):
        SessionDescription(type="hello", sdp="")


def test_end_of_candidates_marker() -> None:
    model = CandidateModel.model_validate({"candidate": None, "sdpMid": "0"})
    candidate = model.to_candidate()

    assert candidate.candidate == ""
    assert candidate.is_end_of_candidates is True
    assert IceCandidate.from_dict(candidate.to_dict()) == candidate


def test_session_joined_accepts_kiosk_and_remote_id() -> None:
    assert SessionJoinedMessage.model_validate({"kioskId": "K1"}).remote_id == "K1"
    assert SessionJoinedMessage.model_validate({"remoteId": "K2"}).remote_id == "K2"
    with pytest.raises(ValidationError):
        SessionJoinedMessage.model_validate({})


def test_session_error_message_defaults() -> None:
    assert SessionErrorMessage.model_validate({}).message == ""
    assert SessionErrorMessage.model_validate({"message": "expired"}).message == "expired"
