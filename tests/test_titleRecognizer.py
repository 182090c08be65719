import pytest

from malScrobbler import titleRecognizer
from malScrobbler.titleRecognizer import Title, TitleRecognizer, recognize_ani_cli_title, recognize_filename


@pytest.fixture
def fake_guessit(monkeypatch):
    """Replace guessit with canned guesses keyed by the guessed string."""
    guesses: dict = {}

    def guess(name, options):
        result = guesses[name]
        if isinstance(result, Exception):
            raise result
        return dict(result)

    monkeypatch.setattr(titleRecognizer, "guessit", guess)
    return guesses


def test_title_defaults_and_hashing():
    assert Title("Some Show") == Title("Some Show", 1, 1)
    assert len({Title("A", 1, 2), Title("A", 1, 2), Title("A", 2, 2)}) == 2


# ani-cli titles


def test_ani_cli_title():
    assert recognize_ani_cli_title("ani-cli: Attack on Titan ep 3") == Title("Attack on Titan", 1, 3)


def test_ani_cli_title_with_ep_in_name():
    assert recognize_ani_cli_title("ani-cli: Prep ep School ep 12") == Title("Prep ep School", 1, 12)


@pytest.mark.parametrize(
    "displayed_title",
    [None, "", "Attack on Titan ep 3", "ani-cli: Attack on Titan", "ani-cli: Attack on Titan ep three", "ani-cli: X ep 0"],
)
def test_ani_cli_title_not_recognized(displayed_title):
    assert recognize_ani_cli_title(displayed_title) is None


# Filenames


def test_release_filename():
    assert recognize_filename("[Group] Some Show - 05 [1080p].mkv") == Title("Some Show", 1, 5)


def test_season_episode_filename():
    assert recognize_filename("Attack on Titan S02E03.mkv") == Title("Attack on Titan", 2, 3)


def test_full_path_uses_file_name():
    assert recognize_filename("/media/anime/[Group] Some Show - 07 [720p].mkv") == Title("Some Show", 1, 7)


def test_missing_episode_defaults_to_one(fake_guessit):
    fake_guessit["Some Movie.mkv"] = {"title": "Some Movie"}
    assert recognize_filename("Some Movie.mkv") == Title("Some Movie", 1, 1)


def test_multiple_episodes_picks_last(fake_guessit):
    fake_guessit["86 - 13.mkv"] = {"title": "Eighty Six", "episode": [86, 13]}
    assert recognize_filename("86 - 13.mkv") == Title("Eighty Six", 1, 13)


def test_multiple_seasons_without_episode(fake_guessit):
    fake_guessit["Show S2 03.mkv"] = {"title": "Show", "season": [2, 3]}
    assert recognize_filename("Show S2 03.mkv") == Title("Show", 2, 3)


def test_digit_episode_title(fake_guessit):
    fake_guessit["Show S2 02.mkv"] = {"title": "Show", "season": 2, "episode_title": "02"}
    assert recognize_filename("Show S2 02.mkv") == Title("Show", 2, 2)


def test_title_from_folder(fake_guessit):
    fake_guessit["E04.mkv"] = {"episode": 4}
    fake_guessit["Season 2"] = {"season": 2}
    fake_guessit["Some Show"] = {"title": "Some Show"}
    assert recognize_filename("/anime/Some Show/Season 2/E04.mkv") == Title("Some Show", 2, 4)


def test_season_from_folder(fake_guessit):
    fake_guessit["E04.mkv"] = {"episode": 4}
    fake_guessit["Some Show S3"] = {"title": "Some Show", "season": 3}
    assert recognize_filename("/anime/Some Show S3/E04.mkv") == Title("Some Show", 3, 4)


def test_no_title(fake_guessit):
    fake_guessit["04.mkv"] = {"episode": 4}
    assert recognize_filename("04.mkv") is None


def test_episode_below_one(fake_guessit):
    fake_guessit["Show - 00.mkv"] = {"title": "Show", "episode": 0}
    assert recognize_filename("Show - 00.mkv") is None


def test_guessit_failure(fake_guessit):
    fake_guessit["broken.mkv"] = RuntimeError("boom")
    assert recognize_filename("broken.mkv") is None


@pytest.mark.parametrize("filename", [None, "", "/"])
def test_empty_filename(filename):
    assert recognize_filename(filename) is None


# Recognizer


def test_recognizer_prefers_ani_cli_title(fake_guessit):
    fake_guessit["Other Show - 01.mkv"] = {"title": "Other Show", "episode": 1}
    recognizer = TitleRecognizer()
    assert recognizer.recognize("ani-cli: Attack on Titan ep 3", "Other Show - 01.mkv") == Title("Attack on Titan", 1, 3)


def test_recognizer_falls_back_to_filename(fake_guessit):
    fake_guessit["Other Show - 01.mkv"] = {"title": "Other Show", "episode": 1}
    recognizer = TitleRecognizer()
    assert recognizer.recognize("Other Show - 01.mkv", "Other Show - 01.mkv") == Title("Other Show", 1, 1)


def test_recognizer_nothing():
    assert TitleRecognizer().recognize() is None
    assert TitleRecognizer().recognize("Attack on Titan ep 3", None) is None


def test_season_zero_specials(fake_guessit):
    fake_guessit["Show S00E02.mkv"] = {"title": "Show", "season": 0, "episode": 2}
    assert recognize_filename("Show S00E02.mkv") is None
