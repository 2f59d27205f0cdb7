import pytest

from chatproxy.routes import match_chat_completion


@pytest.mark.parametrize(
    "model",
    ["gpt4", "gpt-4o-mini", "gpt-35-turbo-16k", "my.deployment", "%20odd"],
)
def test_match_chat_completion_extracts_model(model):
    matched, extracted = match_chat_completion(
        f"/openai/deployments/{model}/chat/completions"
    )
    assert matched is True
    assert extracted == model


@pytest.mark.parametrize(
    "path",
    [
        "/",
        "/v1/chat/completions",
        "/openai/deployments//chat/completions",
        "/openai/deployments/a/b/chat/completions",
        "/openai/deployments/gpt4/chat/completions/",
        "/openai/deployments/gpt4/completions",
        "/openai/deployments/gpt4/embeddings",
        "/prefix/openai/deployments/gpt4/chat/completions",
        "/openai/deployments/gpt4/chat/completions\n",
    ],
)
def test_match_chat_completion_rejects_other_paths(path):
    assert match_chat_completion(path) == (False, "")
