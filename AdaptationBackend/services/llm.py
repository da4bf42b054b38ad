import logging

import requests

from config import HF_CHAT_URL, HF_TOKEN, LLM_MODEL, LLM_TIMEOUT

logger = logging.getLogger(__name__)

# ========== UTILITIES ==========


def merge_system_messages(messages: list[dict]) -> list[dict]:
    """
    HF router : le rôle "system" n'est pas supporté par tous les modèles
    -> on le fusionne dans le premier message utilisateur.
    """
    system = "\n\n".join(m["content"].strip() for m in messages if m["role"] == "system")
    others = [dict(m) for m in messages if m["role"] != "system"]

    if not system:
        return others

    for message in others:
        if message["role"] == "user":
            message["content"] = f"""
{system}

---

{message["content"].strip()}
"""
            return others

    return [{"role": "user", "content": system}, *others]


def call_chat(
    messages: list[dict],
    *,
    temperature: float = 0.2,
    max_tokens: int = 256,
    model: str = LLM_MODEL,
) -> str:
    if not messages:
        raise ValueError("messages must be a non-empty list")

    headers = {
        "Authorization": f"Bearer {HF_TOKEN}",
        "Content-Type": "application/json",
    }

    payload = {
        "model": model,
        "messages": merge_system_messages(messages),
        "temperature": temperature,
        "max_tokens": max_tokens,
    }

    res = requests.post(
        HF_CHAT_URL,
        headers=headers,
        json=payload,
        timeout=LLM_TIMEOUT,
    )

    if res.status_code != 200:
        logger.warning("HF error status=%s body=%s", res.status_code, res.text[:500])

    res.raise_for_status()

    data = res.json()
    content = data["choices"][0]["message"]["content"]
    if not isinstance(content, str):
        raise ValueError(f"HF response has no text content: {content!r}")
    return content.strip()
