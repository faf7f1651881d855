# installops/models/partner.py

from .base import BaseModel, db


class Partner(BaseModel):
    """Installation partner whose job sheets are imported."""

    __tablename__ = "partners"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    slug = db.Column(db.String(100), unique=True, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)

    import_profiles = db.relationship("ImportProfile", back_populates="partner", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Partner {self.slug}>"


class Engineer(BaseModel):
    """Field engineer that partner sheets refer to by name or email."""

    __tablename__ = "engineers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=True, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)

    def __repr__(self):
        return f"<Engineer {self.name}>"
