import pytest

from gitatlas.core.urls import host_of, normalize_repo_path, points_at, split_url


@pytest.mark.parametrize("url,expected", [
    ("https://github.com/me/p.git", ("github.com", "/me/p.git")),
    ("ssh://git@Host.example.com:2222/srv/p.git", ("host.example.com", "/srv/p.git")),
    ("git@github.com:me/p.git", ("github.com", "me/p.git")),
    ("file:///srv/git/p.git", ("local", "/srv/git/p.git")),
    ("/srv/git/p.git", ("local", "/srv/git/p.git")),
    ("../sibling", ("local", "../sibling")),
])
def test_split_url(url, expected):
    assert split_url(url) == expected


def test_host_of_groups_local_paths():
    assert host_of("/srv/a.git") == host_of("file:///srv/b.git") == "local"


def test_normalize_repo_path():
    assert normalize_repo_path("/home/me/p/.git/") == "/home/me/p"
    assert normalize_repo_path("/srv/p.git") == "/srv/p"


def test_points_at_absolute_path_on_host():
    assert points_at("ssh://me@alpha.lan/home/me/src/p", "alpha", "/home/me/src/p")
    assert points_at("alpha:/home/me/src/p.git", "alpha.lan", "/home/me/src/p")
    assert not points_at("ssh://beta/home/me/src/p", "alpha", "/home/me/src/p")
    assert not points_at("/home/me/src/p", "alpha", "/home/me/src/p")


def test_points_at_home_relative_path():
    assert points_at("alpha:src/p", "alpha", "/home/me/src/p")
    assert points_at("alpha:src/p", "alpha", "/home/me/src/p", home="/home/me")
    assert not points_at("alpha:src/p", "alpha", "/home/me/src/p", home="/root")
    assert not points_at("alpha:other/p", "alpha", "/home/me/src/p")
