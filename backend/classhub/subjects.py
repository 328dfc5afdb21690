"""Subjects taught to the class. Constant so translation keys stay stable."""

from classhub.schemas.academic import Subject

SUBJECTS: list[Subject] = [
    Subject(id="math", name="Mathematics", color="#4f46e5"),
    Subject(id="physics", name="Physics & Chemistry", color="#0891b2"),
    Subject(id="svt", name="Life & Earth Sciences", color="#16a34a"),
    Subject(id="french", name="French", color="#db2777"),
    Subject(id="arabic", name="Arabic", color="#ca8a04"),
    Subject(id="english", name="English", color="#9333ea"),
    Subject(id="philosophy", name="Philosophy", color="#64748b"),
    Subject(id="islamic", name="Islamic Education", color="#059669"),
    Subject(id="history", name="History & Geography", color="#b45309"),
    Subject(id="pe", name="Physical Education", color="#dc2626"),
]


def subject_name(subject_id: str) -> str:
    """Display name for a subject id, or the id itself when unknown."""
    for subject in SUBJECTS:
        if subject.id == subject_id:
            return subject.name
    return subject_id
