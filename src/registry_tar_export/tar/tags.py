"""Repository and tag parsing for archive metadata."""

DEFAULT_TAG = "latest"


def parse_repository_tag(repo_tag: str) -> tuple[str, str]:
    """저장소:태그 문자열을 저장소와 태그 구성요소로 파싱합니다.

    마지막 ':' 기준으로 분리하며, 해당 ':'가 레지스트리 포트에 속하는 경우
    (뒤에 '/'가 오는 경우) 태그가 없는 것으로 봅니다. '@digest' 접미사는
    RepoTags에 쓸 수 없으므로 제거됩니다.

    Args:
        repo_tag: 저장소 태그 문자열
            - 예: "nginx:alpine", "localhost:5000/myapp:latest"
            - 레지스트리 포함: "registry.io/company/app:v1.0"

    Returns:
        tuple[str, str]: (저장소, 태그) 튜플

    Examples:
        # 기본 이미지 태그 파싱
        repo, tag = parse_repository_tag("repo/name:v1")
        # 결과: ("repo/name", "v1")

        # 레지스트리 포트만 있는 경우
        repo, tag = parse_repository_tag("localhost:5000/myapp")
        # 결과: ("localhost:5000/myapp", "latest")

        # 태그 없는 경우 (기본값 사용)
        repo, tag = parse_repository_tag("myapp")
        # 결과: ("myapp", "latest")
    """
    name = repo_tag.strip().split("@", 1)[0]

    if ":" in name:
        # Split only on the last ':' to handle registry URLs like localhost:5000/repo:tag
        repository, tag = name.rsplit(":", 1)
        if "/" in tag:
            return name, DEFAULT_TAG
        return repository, tag or DEFAULT_TAG

    # No tag specified, use default
    return name, DEFAULT_TAG


def is_digest_only(repo_tag: str) -> bool:
    """True for ``repo@digest`` references that name no tag."""
    name, separator, _ = repo_tag.strip().partition("@")
    if not separator:
        return False
    return name.rfind(":") <= name.rfind("/")


def format_repo_tag(repo_tag: str) -> str:
    """Normalize a reference to the ``repo:tag`` form stored in RepoTags."""
    repository, tag = parse_repository_tag(repo_tag)
    return f"{repository}:{tag}"
