from __future__ import annotations

from huggingface_hub import snapshot_download

from core.settings import settings


def download(repo_id: str) -> None:
    print(f"[download] {repo_id}")
    path = snapshot_download(repo_id)
    print(f"[ok] {repo_id} -> {path}")


def main():
    download(settings.vision_model_id)
    if settings.caption_backend == "transformers":
        download(settings.caption_model_id)
    else:
        print("[skip] caption backend disabled")


if __name__ == "__main__":
    main()
