# anonchat/utils/security.py
import io
import logging
from PIL import Image, UnidentifiedImageError


def strip_exif_data(image_bytes: bytes) -> bytes:
    """Удаляет EXIF-метаданные из байтов изображения."""
    try:
        image = Image.open(io.BytesIO(image_bytes))

        # Пересохраняем только пиксели, без метаданных
        clean = Image.new(image.mode, image.size)
        clean.putdata(list(image.getdata()))

        output = io.BytesIO()
        clean.save(output, format=image.format or 'JPEG')
        return output.getvalue()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logging.error(f"Error stripping EXIF: {e}")
        # Не картинка или битый файл - отдаем как есть
        return image_bytes
