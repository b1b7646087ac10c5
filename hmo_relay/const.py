CONTAINER_CONTENT_TYPE = "x-container/tivo-videos"
FOLDER_CONTENT_TYPE = "x-container/folder"
SERVER_CONTENT_TYPE = "x-container/tivo-server"
ITEM_CONTENT_TYPE = "video/x-tivo-mpeg"

VIDEO_EXTENSIONS = frozenset(
    {
        ".avi",
        ".m2ts",
        ".m4v",
        ".mkv",
        ".mov",
        ".mp4",
        ".mpeg",
        ".mpg",
        ".ts",
        ".vob",
        ".webm",
        ".wmv",
    }
)
