"""
Certification Tracker
Student model — owned by the student registry, read here by reference only.

Student CRUD lives outside this service; the table is mapped so that
certification processes can carry a real foreign key and so that progress
messages can address the student by name.
"""

from datetime import UTC, datetime

from certtrack.models import db


class Student(db.Model):
    """Student identity referenced 1:1 by a CertificationProcess."""

    __tablename__ = "students"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), default="")
    phone = db.Column(db.String(30), default="", comment="WhatsApp number with country code")
    cpf = db.Column(db.String(14), nullable=True, unique=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )

    certification = db.relationship(
        "CertificationProcess", back_populates="student", uselist=False,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "cpf": self.cpf,
        }

    def __repr__(self):
        return f"<Student {self.id}: {self.name}>"
