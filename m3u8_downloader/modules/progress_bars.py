import sys


class Callback:
    @classmethod
    def text_progress_bar(cls, downloaded, total, title=False):
        if not total:
            return

        bar_length = 50
        filled_length = int(round(bar_length * downloaded / float(total)))
        percents = round(100.0 * downloaded / float(total), 1)
        bar = '#' * filled_length + '-' * (bar_length - filled_length)
        if title is False:
            sys.stdout.write(f"\r[{bar}] {percents}%")

        else:
            sys.stdout.write(f"\r | {title} | -->: [{bar}] {percents}%")

        sys.stdout.flush()

    @classmethod
    def on_progress(cls, progress):
        """Handler for the downloader's progress event."""
        cls.text_progress_bar(progress["downloaded"], progress["total"])
