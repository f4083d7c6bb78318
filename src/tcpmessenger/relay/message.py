"""
Relayed message value type.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Message:
    """
    One line received from a producer or chat participant.

    Attributes:
        name: Sender's display name; empty for anonymous producers.
        content: The trimmed line, without its newline.
    """

    name: str
    content: str

    @property
    def is_anonymous(self) -> bool:
        return not self.name

    def output_string(self) -> str:
        """
        Format for delivery to consumers.

            Message("alice", "hi").output_string()  ->  "alice: hi\\n"
            Message("", "hi").output_string()       ->  "hi\\n"
        """
        if self.name:
            return f"{self.name}: {self.content}\n"
        return f"{self.content}\n"

    def excludes(self, recipient_name: str) -> bool:
        """
        True if this message must not be delivered to recipient_name.

        Only a named sender is ever excluded, and only from the entry that
        carries the same name; anonymous consumers have an empty name and
        always receive everything.
        """
        return bool(self.name) and self.name == recipient_name
