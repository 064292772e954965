from reelpicks.models.candidate import Genre
from reelpicks.models.media import MediaType

movie_genres = {
    28: "Action",
    12: "Adventure",
    16: "Animation",
    35: "Comedy",
    80: "Crime",
    99: "Documentary",
    18: "Drama",
    10751: "Family",
    14: "Fantasy",
    36: "History",
    27: "Horror",
    10402: "Music",
    9648: "Mystery",
    10749: "Romance",
    878: "Science Fiction",
    10770: "TV Movie",
    53: "Thriller",
    10752: "War",
    37: "Western",
}


series_genres = {
    10759: "Action & Adventure",
    16: "Animation",
    35: "Comedy",
    80: "Crime",
    99: "Documentary",
    18: "Drama",
    10751: "Family",
    10762: "Kids",
    9648: "Mystery",
    10763: "News",
    10764: "Reality",
    10765: "Sci-Fi & Fantasy",
    10766: "Soap",
    10767: "Talk",
    10768: "War & Politics",
    37: "Western",
}


def genre_map(media_type: MediaType) -> dict[int, str]:
    return movie_genres if media_type is MediaType.MOVIE else series_genres


def genres_from_ids(media_type: MediaType, genre_ids: list[int] | None) -> tuple[Genre, ...]:
    """Resolve TMDB genre ids to named genres, keeping the provider's order."""
    names = genre_map(media_type)
    return tuple(Genre(id=gid, name=names.get(gid, "")) for gid in (genre_ids or []) if isinstance(gid, int))


def genres_from_names(media_type: MediaType, genre_names: list[str] | None) -> tuple[Genre, ...]:
    """Resolve genre names (as Trakt reports them) to TMDB genres. Unknown names are dropped."""
    lookup = {name.lower(): gid for gid, name in genre_map(media_type).items()}
    genres = []
    for name in genre_names or []:
        gid = lookup.get(str(name).replace("-", " ").lower())
        if gid is not None:
            genres.append(Genre(id=gid, name=genre_map(media_type)[gid]))
    return tuple(genres)
