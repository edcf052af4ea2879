from __future__ import annotations

from .models import PostureClass

FEEDBACK_MESSAGES = {
    PostureClass.GOOD: "Great posture! Keep it up.",
    PostureClass.BAD: "Sit tall and relax your shoulders.",
    PostureClass.LEANING_FORWARD: "Bring your head back in line with your spine.",
}
NO_PERSON_FEEDBACK = "Please position yourself in front of the camera."


def confidence_note(confidence: float) -> str:
    if confidence > 0.8:
        return "Very confident"
    if confidence > 0.6:
        return "Confident"
    if confidence > 0.4:
        return "Moderate confidence"
    return "Low confidence - hold still"


def feedback_for(posture_class: PostureClass | None, confidence: float) -> str:
    """User-facing advice for a classification, with a confidence qualifier."""
    base = FEEDBACK_MESSAGES.get(posture_class, "Analyzing posture...")
    return f"{base} ({confidence_note(confidence)})"


def status_for(confidence: float) -> str:
    if confidence > 0.7:
        return "High confidence"
    if confidence > 0.5:
        return "Medium confidence"
    return "Low confidence - hold still"


def quality_class(percentage: float) -> str:
    """Styling bucket for a 0-100 metric readout."""
    if percentage >= 80:
        return "high"
    if percentage >= 60:
        return "medium"
    return "low"
