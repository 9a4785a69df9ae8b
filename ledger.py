from scoring import word_count


class AnswerLedger:
    """Fixed-length answers for one section, indexed by question number (0-based).

    Entries are updated in place one index at a time; the list is never
    rebuilt, so concurrent edits to different indices cannot overwrite each
    other. An empty string means unanswered.
    """

    def __init__(self, size):
        if size < 0:
            raise ValueError("ledger size must be non-negative")
        self._answers = [""] * size

    def __len__(self):
        return len(self._answers)

    def __iter__(self):
        return iter(self.values())

    def set(self, index, value):
        if not 0 <= index < len(self._answers):
            raise IndexError(f"question index {index} out of range (0-{len(self._answers) - 1})")
        self._answers[index] = "" if value is None else str(value)

    def get(self, index):
        if not 0 <= index < len(self._answers):
            return ""
        return self._answers[index]

    def values(self):
        return tuple(self._answers)

    def answered_count(self):
        return sum(1 for answer in self._answers if answer.strip())

    def word_counts(self):
        return [word_count(answer) for answer in self._answers]
