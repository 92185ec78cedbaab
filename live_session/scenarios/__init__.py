"""
Scenario configurations for the live session.

Each scenario defines:
- prompt: System instruction for the remote conversational service
- nudge_text: Background context-refresh text sent while the session is open
- voice: Optional prebuilt voice name
- name: Scenario identifier
"""
