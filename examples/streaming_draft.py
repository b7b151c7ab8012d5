"""Streaming example: tokens printed as the launcher sends them."""

from usbllm import LauncherClient

with LauncherClient() as client:
    for event, data in client.stream_draft(
        flow="compose",
        tone="formal",
        length="medium",
        instructions="Announce the office move to the third floor next Monday.",
    ):
        if event == "meta":
            print(f"[meta] {data}")
        elif event == "token":
            print(data["text"], end="", flush=True)
        elif event == "error":
            print(f"\n[error] {data['message']}")
    print("\n--- Done ---")
