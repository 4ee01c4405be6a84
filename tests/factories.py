"""Builders for test rows and uploads."""
import io

from starlette.datastructures import UploadFile

from models import User, Video
from userstore import hash_password

PASSWORD = "p1"
# bcrypt is slow on purpose; hash once for every seeded user
PASSWORD_HASH = hash_password(PASSWORD)


def make_user(username, **fields) -> User:
    values = dict(
        username=username,
        email=f"{username}@example.com",
        full_name=username.title(),
        password=PASSWORD_HASH,
        avatar=f"/media/avatars/{username}.png",
    )
    values.update(fields)
    return User(**values)


def make_video(owner_id, title="A video", **fields) -> Video:
    values = dict(title=title, thumbnail="/media/t.png", video_file="/media/v.mp4", duration=12.5, owner_id=owner_id)
    values.update(fields)
    return Video(**values)


def upload(name="avatar.png", data=b"\x89PNG fake image") -> UploadFile:
    return UploadFile(file=io.BytesIO(data), filename=name)
