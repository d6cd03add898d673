from tvarchiver.extractor import (
    EpisodeStub, RegexEpisodeExtractor, SoupEpisodeExtractor, discover_seasons,
    extract_embed_id, extract_episodes, number_episodes, parse_label, show_slug_from_url,
)

LISTING = """
<table>
<tr><td><a href="index.php?video=501"><b>01x03 - Pilot</b></a></td></tr>
<tr><td><a href='index.php?video=499'><font color="red">01x01</font> - Začátek</a></td></tr>
<tr><td><a href=index.php?video=500>01x02 – Ve&nbsp;sklepě</a></td></tr>
<tr><td><a href="index.php?video=501">01x03 - Pilot (again)</a></td></tr>
<tr><td><a href="index.php?video=777"> </a></td></tr>
<tr><td><a href="index.php?stranka=kontakt">Kontakt</a></td></tr>
</table>
"""


def test_parse_label_with_season_and_episode():
    assert parse_label("01x03 - Pilot", 5) == (1, 3, "Pilot")


def test_parse_label_without_pattern_uses_default_season_and_placeholder():
    assert parse_label("Episode Five", 2) == (2, 0, "Episode Five")


def test_parse_label_title_falls_back_to_label():
    season, episode, title = parse_label("2x10", 1)
    assert (season, episode, title) == (2, 10, "2x10")


def test_extract_pilot_scenario():
    stubs = extract_episodes('<a href="index.php?video=1">01x03 - Pilot</a>')
    assert stubs == [EpisodeStub(season=1, episode=3, title="Pilot", source_ref="1")]


def test_only_blank_labels_are_discarded():
    html = """
    <a href="index.php?video=1">   </a>
    <a href="index.php?video=2">—</a>
    <a href="index.php?video=3">01x02 - Pilot</a>
    """
    stubs = extract_episodes(html)
    assert [(s.source_ref, s.episode, s.title) for s in stubs] == [("2", 1, "—"), ("3", 2, "Pilot")]


def test_extract_dedups_and_orders():
    stubs = extract_episodes(LISTING)
    refs = [s.source_ref for s in stubs]
    assert refs == ["499", "500", "501"]
    assert len(refs) == len(set(refs))
    # first occurrence wins
    assert stubs[2].title == "Pilot"
    assert stubs[0].title == "Začátek"
    assert stubs[1].title == "Ve sklepě"


def test_placeholder_gets_next_number_after_earlier_placeholders():
    html = """
    <a href="index.php?video=10">Úvod</a>
    <a href="index.php?video=11">Druhý díl</a>
    <a href="index.php?video=12">Episode Five</a>
    """
    stubs = extract_episodes(html, default_season=2)
    last = [s for s in stubs if s.title == "Episode Five"][0]
    assert last.season == 2
    assert last.episode == 3
    assert [s.episode for s in stubs] == [1, 2, 3]


def test_synthesized_numbers_continue_after_explicit_ones():
    stubs = number_episodes([
        EpisodeStub(1, 0, "a", "30"),
        EpisodeStub(1, 0, "b", "31"),
        EpisodeStub(1, 4, "d", "20"),
        EpisodeStub(1, 7, "e", "21"),
    ])
    numbers = [s.episode for s in stubs]
    assert numbers == [1, 2, 4, 7]
    assert numbers == sorted(numbers)


def test_numbering_sorts_refs_numerically():
    stubs = number_episodes([
        EpisodeStub(1, 0, "ten", "10"),
        EpisodeStub(1, 0, "nine", "9"),
    ])
    assert [(s.title, s.episode) for s in stubs] == [("nine", 1), ("ten", 2)]


def test_soup_extractor_matches_regex_extractor():
    regex = RegexEpisodeExtractor().extract(LISTING, 1)
    soup = SoupEpisodeExtractor().extract(LISTING, 1)
    assert regex == soup


def test_extract_episodes_accepts_custom_extractor():
    stubs = extract_episodes(LISTING, 1, SoupEpisodeExtractor())
    assert [s.episode for s in stubs] == [1, 2, 3]


def test_discover_seasons():
    html = """
    <a href="index.php?stranka=serie&cislo=2">2. série</a>
    <a href="index.php?stranka=serie&amp;cislo=1">1. série</a>
    <a href="index.php?stranka=serie&cislo=2">znovu</a>
    """
    assert discover_seasons(html) == [1, 2]
    assert discover_seasons("<p>nic</p>") == []


def test_extract_embed_id():
    html = '<iframe src="http://nahnoji.cz/embed?id=48213" width="640"></iframe>'
    assert extract_embed_id(html) == "48213"
    assert extract_embed_id("<p>no player</p>") is None


def test_show_slug_from_url():
    assert show_slug_from_url("http://rick-a-morty.nikee.net") == "rick-a-morty"
    assert show_slug_from_url("https://Simpsonovi.alyss.cz/") == "simpsonovi"
    assert show_slug_from_url("http://example.com") == "unknown-show"
