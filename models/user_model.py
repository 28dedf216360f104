from werkzeug.security import generate_password_hash, check_password_hash

from models import db

class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    role = db.Column(db.String(10), nullable=False)  # "faculty" or "student"
    username = db.Column(db.String(50), unique=True, nullable=False)
    password = db.Column(db.String(200), nullable=False)  # hashed
    name = db.Column(db.String(100), nullable=False)
    roll_no = db.Column(db.String(20), nullable=True)  # only for students

    ROLES = ("faculty", "student")

    def set_password(self, raw_password):
        self.password = generate_password_hash(raw_password)

    def check_password(self, raw_password):
        return check_password_hash(self.password, raw_password)

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "role": self.role,
            "rollNo": self.roll_no,
        }
