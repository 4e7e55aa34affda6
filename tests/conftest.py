import os
import tempfile

# main.py builds an app from the environment at import time; keep it away
# from any real chat list
os.environ["STORAGE_BACKEND"] = "file"
os.environ["CHATS_FILE"] = os.path.join(tempfile.mkdtemp(prefix="relay-tests-"), "chats.json")
