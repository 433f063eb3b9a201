import pytest

from services.extraction import HeuristicExtractor, parse_grades


class TestParseGrades:
    """Unit tests for the regex grade parser"""

    def test_label_carries_name_across_clauses(self):
        result = parse_grades("Alice: Math 92, Biology 88")

        assert result.class_name is None
        assert [(e.student_name, e.subject, e.grade) for e in result.entries] == [
            ("Alice", "Math", 92.0),
            ("Alice", "Biology", 88.0),
        ]
        assert result.missing == []

    def test_class_name_and_value_in_subject(self):
        result = parse_grades("Class 10B: John 85 in Math; Mary 90 in Math")

        assert result.class_name == "10B"
        assert [(e.student_name, e.subject, e.grade) for e in result.entries] == [
            ("John", "Math", 85.0),
            ("Mary", "Math", 90.0),
        ]

    def test_verb_phrasing_with_full_name(self):
        result = parse_grades("John Doe got 78 in Chemistry")

        assert len(result.entries) == 1
        entry = result.entries[0]
        assert entry.student_name == "John Doe"
        assert entry.subject == "Chemistry"
        assert entry.grade == 78.0

    def test_value_only_clause_reuses_previous_student(self):
        result = parse_grades("Alice scored 92 in Math and 88 in Biology")

        assert [(e.student_name, e.subject) for e in result.entries] == [
            ("Alice", "Math"),
            ("Alice", "Biology"),
        ]

    def test_name_and_number_without_subject(self):
        result = parse_grades("Bob 85")

        assert len(result.entries) == 1
        assert result.entries[0].student_name == "Bob"
        assert result.entries[0].subject is None
        assert result.entries[0].grade == 85.0

    def test_decimal_value_is_not_split(self):
        result = parse_grades("Carol got 92.5 in Physics.")

        assert len(result.entries) == 1
        assert result.entries[0].grade == 92.5
        assert result.entries[0].subject == "Physics"

    def test_name_without_value_is_missing(self):
        result = parse_grades("Alice got 90 in Math, Bob got nothing yet")

        assert [e.student_name for e in result.entries] == ["Alice"]
        assert result.missing == ["Bob"]

    @pytest.mark.parametrize("text", ["", "   ", "hello there", "how are you today"])
    def test_no_grades(self, text):
        result = parse_grades(text)

        assert result.entries == []


class TestHeuristicExtractor:
    """The adapter into the shared extraction result"""

    @pytest.mark.asyncio
    async def test_adapts_to_extraction_result(self):
        result = await HeuristicExtractor().extract("Class 7A: Alice: Math 92, Biology 88")

        assert result.source == "heuristic"
        assert result.group_name == "7A"
        assert [(e.subject_name, e.category, e.value) for e in result.accepted_entries] == [
            ("Alice", "Math", 92.0),
            ("Alice", "Biology", 88.0),
        ]
