import os

os.environ["DJANGO_ENV"] = "test"

from config.settings import *  # noqa: E402,F401,F403
