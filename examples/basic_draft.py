"""Basic example: check the launcher, then draft a reply."""

from usbllm import LauncherClient

client = LauncherClient()

print("Health:", client.health())
print("Model:", client.models()["selected"])

text = client.draft_text(
    flow="reply",
    tone="friendly",
    length="short",
    subject="Lunch on Friday?",
    context="Hi, are you free for lunch on Friday around noon? - Sam",
)
print("\n--- Draft ---")
print(text)

client.close()
